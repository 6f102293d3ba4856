"""
Configuration for a Solr core connection.

All configuration is validated at construction time, not per-call.
Environment variables are read once via ``SolrConfig.from_env()`` and
the resulting object is immutable.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

_DEFAULT_HOST = "http://127.0.0.1:8983"
_DEFAULT_TIMEOUT_CONNECT = 5.0
_DEFAULT_TIMEOUT_READ = 10.0
_DEFAULT_TIMEOUT_POOL = 10.0
_DEFAULT_RETRIES = 2


@dataclass(frozen=True)
class SolrConfig:
    """Validated, immutable configuration for one Solr core.

    Args:
        core: Core (or collection) name.
        host: Solr base URL, with or without a trailing ``/solr``.
        username: Basic-auth user; auth is only sent when both user and
            password are set.
        password: Basic-auth password.
        timeout_connect: TCP connect timeout in seconds.
        timeout_read: HTTP read timeout in seconds.
        timeout_pool: Connection pool acquisition timeout in seconds.
        retries: Transport-level retries on connection failure.
        verify_ssl: TLS verification (True, False, or path to CA bundle).
    """

    core: str
    host: str = _DEFAULT_HOST
    username: str = ""
    password: str = field(default="", repr=False)
    timeout_connect: float = _DEFAULT_TIMEOUT_CONNECT
    timeout_read: float = _DEFAULT_TIMEOUT_READ
    timeout_pool: float = _DEFAULT_TIMEOUT_POOL
    retries: int = _DEFAULT_RETRIES
    verify_ssl: bool | str = True

    def __post_init__(self) -> None:
        errors: list[str] = []

        if not self.core:
            errors.append("core must be a non-empty string")
        if not self.host:
            errors.append("host must be a non-empty string")
        else:
            parts = urlsplit(self.host)
            if parts.scheme not in ("http", "https") or not parts.netloc:
                errors.append(f"host must be an absolute http(s) URL, got {self.host!r}")
        if self.timeout_connect <= 0:
            errors.append(f"timeout_connect must be > 0, got {self.timeout_connect}")
        if self.timeout_read <= 0:
            errors.append(f"timeout_read must be > 0, got {self.timeout_read}")
        if self.timeout_pool <= 0:
            errors.append(f"timeout_pool must be > 0, got {self.timeout_pool}")
        if self.retries < 0:
            errors.append(f"retries must be >= 0, got {self.retries}")

        if errors:
            raise ValueError("Invalid Solr configuration: " + "; ".join(errors))

    @property
    def base_path(self) -> str:
        """URL of the core, e.g. ``http://host:8983/solr/books``."""
        host = self.host.rstrip("/")
        if host.endswith("/solr"):
            return f"{host}/{self.core}"
        return f"{host}/solr/{self.core}"

    @property
    def auth(self) -> tuple[str, str] | None:
        if self.username and self.password:
            return (self.username, self.password)
        return None

    @classmethod
    def from_env(cls, **overrides: object) -> SolrConfig:
        """Build config from environment variables with optional overrides.

        Environment variables:
            SOLR_HOST             -- Solr base URL (default http://127.0.0.1:8983)
            SOLR_CORE             -- Core or collection name (required)
            SOLR_USERNAME         -- Basic-auth user
            SOLR_PASSWORD         -- Basic-auth password
            SOLR_TIMEOUT_CONNECT  -- Connect timeout seconds (default 5.0)
            SOLR_TIMEOUT_READ     -- Read timeout seconds (default 10.0)
            SOLR_TIMEOUT_POOL     -- Pool timeout seconds (default 10.0)
            SOLR_RETRIES          -- Transport retries (default 2)
            SOLR_VERIFY_SSL       -- "true", "false", or path to CA bundle

        Explicit keyword arguments override environment variables.
        """

        def _env_float(key: str, default: float) -> float:
            raw = os.environ.get(key)
            if raw is None:
                return default
            try:
                return float(raw)
            except ValueError:
                raise ValueError(f"Environment variable {key}={raw!r} is not a valid number")

        def _env_int(key: str, default: int) -> int:
            raw = os.environ.get(key)
            if raw is None:
                return default
            try:
                return int(raw)
            except ValueError:
                raise ValueError(f"Environment variable {key}={raw!r} is not a valid integer")

        def _env_verify(key: str, default: bool | str) -> bool | str:
            raw = os.environ.get(key)
            if raw is None:
                return default
            low = raw.strip().lower()
            if low in ("true", "1", "yes"):
                return True
            if low in ("false", "0", "no"):
                return False
            return raw  # CA bundle path

        kwargs: dict[str, object] = {
            "core": os.environ.get("SOLR_CORE", ""),
            "host": os.environ.get("SOLR_HOST", _DEFAULT_HOST).rstrip("/"),
            "username": os.environ.get("SOLR_USERNAME", ""),
            "password": os.environ.get("SOLR_PASSWORD", ""),
            "timeout_connect": _env_float("SOLR_TIMEOUT_CONNECT", _DEFAULT_TIMEOUT_CONNECT),
            "timeout_read": _env_float("SOLR_TIMEOUT_READ", _DEFAULT_TIMEOUT_READ),
            "timeout_pool": _env_float("SOLR_TIMEOUT_POOL", _DEFAULT_TIMEOUT_POOL),
            "retries": _env_int("SOLR_RETRIES", _DEFAULT_RETRIES),
            "verify_ssl": _env_verify("SOLR_VERIFY_SSL", True),
        }
        kwargs.update({k: v for k, v in overrides.items() if v is not None})

        config = cls(**kwargs)  # type: ignore[arg-type]
        logger.info(
            "Solr config: base_path=%s auth=%s timeout_connect=%.1f timeout_read=%.1f retries=%d",
            config.base_path,
            "basic" if config.auth else "none",
            config.timeout_connect,
            config.timeout_read,
            config.retries,
        )
        return config
