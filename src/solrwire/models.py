"""
Exception hierarchy and error-detail types for solrwire.

Solr is inconsistent about the shape of the ``details`` it attaches to an
error: a failed batch of update commands produces one object per failing
command, anything else produces plain strings. Both are modelled as frozen
``ErrorDetail`` variants so callers can render them uniformly and still reach
the offending command item when there is one.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from solrwire.response import Response


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class SolrError(Exception):
    """Base exception for all solrwire errors."""


class SolrConnectionError(SolrError):
    """Solr is unreachable or a transport-level error occurred (DNS, TCP, TLS, timeout)."""


class SolrHTTPError(SolrError):
    """Solr returned an HTTP error status without a decodable JSON envelope."""

    def __init__(self, status_code: int, detail: str = "") -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"HTTP {status_code}: {detail}")


class SolrDecodeError(SolrError):
    """A response could not be decoded (bad JSON, unexpected shape)."""

    def __init__(self, message: str, raw_body: str = "") -> None:
        self.raw_body = raw_body[:2000]
        super().__init__(message)


class QueryValidationError(SolrError, ValueError):
    """Caller input to a query builder operation was rejected."""


class ParamsRequiredError(QueryValidationError):
    def __init__(self, message: str = "a required parameter is missing") -> None:
        super().__init__(message)


class TooManyParamsError(QueryValidationError):
    def __init__(self, message: str = "only one of max, min or sort may be populated") -> None:
        super().__init__(message)


class InvalidNullPolicyError(QueryValidationError):
    def __init__(self, value: object) -> None:
        self.value = value
        super().__init__(f"invalid null policy {value!r}, use one of ignore, expand, collapse")


class InvalidHintError(QueryValidationError):
    def __init__(self, value: object) -> None:
        self.value = value
        super().__init__(f"invalid hint {value!r}, use top_fc")


# ---------------------------------------------------------------------------
# Error details
# ---------------------------------------------------------------------------


class ErrorDetail(ABC):
    """Common interface of the error-detail variants."""

    @property
    def item(self) -> dict[str, Any]:
        return {}

    @abstractmethod
    def summary(self) -> str: ...

    def __str__(self) -> str:
        return self.summary()


@dataclass(frozen=True)
class StructuredDetail(ErrorDetail):
    """Failure of one command in a batch update.

    ``command`` is the update command name (``add``, ``delete``, ...) and
    ``command_item`` the payload Solr rejected.
    """

    command: str
    command_item: dict[str, Any] = field(default_factory=dict)
    messages: list[str] = field(default_factory=list)

    @property
    def item(self) -> dict[str, Any]:
        return self.command_item

    def summary(self) -> str:
        return f"{self.command}: [{' '.join(self.messages)}]"


@dataclass(frozen=True)
class PlainDetail(ErrorDetail):
    """A standalone detail message."""

    text: str

    def summary(self) -> str:
        return self.text


class ResponseError(SolrError):
    """Error reported by Solr in the ``error`` field of a response envelope.

    The decoded envelope is kept on :attr:`response` so callers can still
    reach the header or any partial data that came with the error.
    """

    def __init__(
        self,
        message: str,
        *,
        code: int = 0,
        metadata: list[str] | None = None,
        details: list[ErrorDetail] | None = None,
        response: Response | None = None,
    ) -> None:
        self.message = message
        self.code = code
        self.metadata = metadata or []
        self.details = details or []
        self.response = response
        super().__init__(self._render())

    def _render(self) -> str:
        if not self.details:
            return self.message
        return f"{self.message}: {{{', '.join(d.summary() for d in self.details)}}}"

    def __repr__(self) -> str:
        return f"ResponseError(code={self.code}, message={self.message!r}, details={len(self.details)})"
