"""
Logging setup for solrwire.

Every module logs through ``logging.getLogger(__name__)`` under the
``solrwire`` hierarchy and never configures handlers itself. Applications
that want the library's output call :func:`configure_logging` once::

    from solrwire.logging import configure_logging, request_scope
    configure_logging()                  # JSON lines on stderr, INFO
    with request_scope("search-7f3a"):   # shared by every Solr call inside
        client.search(q)

Client records carry the Solr call as structured fields (see
:data:`SOLR_FIELDS`) so that JSON output can be filtered by core, handler
path or status without parsing the message.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

LOGGER_NAME = "solrwire"

# Emitted in this order, ahead of any other extras.
SOLR_FIELDS = ("solr_core", "solr_method", "solr_path", "status", "num_found", "elapsed_ms")

_request_id_var: ContextVar[str] = ContextVar("solrwire_request_id", default="")

_RESERVED_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {
    "message",
    "asctime",
    "request_id",
}


def _new_request_id() -> str:
    return uuid.uuid4().hex[:12]


def bind_request_id(request_id: str | None = None) -> str:
    """Bind *request_id* (or a fresh short id) to the current context and return it."""
    rid = request_id or _new_request_id()
    _request_id_var.set(rid)
    return rid


def get_request_id() -> str:
    return _request_id_var.get()


@contextmanager
def request_scope(request_id: str | None = None) -> Iterator[str]:
    """Correlate the records of one logical Solr operation.

    An id already bound by the caller is kept unless *request_id* is given.
    The previous binding is restored on exit.
    """
    current = _request_id_var.get()
    if current and request_id is None:
        yield current
        return
    token = _request_id_var.set(request_id or _new_request_id())
    try:
        yield _request_id_var.get()
    finally:
        _request_id_var.reset(token)


def solr_extra(core: str, method: str, path: str, **fields: Any) -> dict[str, Any]:
    """Build the ``extra=`` mapping for a record about one Solr call.

    ``elapsed_ms`` is rounded to 0.1 ms; ``None`` values are dropped.
    """
    extra: dict[str, Any] = {"solr_core": core, "solr_method": method, "solr_path": path}
    for key, value in fields.items():
        if value is None:
            continue
        extra[key] = round(value, 1) if key == "elapsed_ms" else value
    return extra


def _extras(record: logging.LogRecord) -> list[tuple[str, Any]]:
    """Non-standard record attributes, Solr fields first."""
    attrs = record.__dict__
    solr = [(k, attrs[k]) for k in SOLR_FIELDS if k in attrs]
    rest = [(k, v) for k, v in attrs.items() if k not in _RESERVED_ATTRS and k not in SOLR_FIELDS]
    return solr + rest


class _RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id_var.get()  # type: ignore[attr-defined]
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record.

    Order: ``timestamp``, ``level``, ``logger``, ``message``, ``request_id``,
    the Solr call fields, any other ``extra`` fields, then ``exception``.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        rid = getattr(record, "request_id", "") or _request_id_var.get()
        if rid:
            entry["request_id"] = rid

        entry.update(_extras(record))

        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines with the Solr call fields appended as ``key=value``."""

    def __init__(self) -> None:
        super().__init__(
            "%(asctime)s %(levelname)-5s [%(request_id)s] %(name)s - %(message)s",
            defaults={"request_id": ""},
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        solr = [f"{k}={record.__dict__[k]}" for k in SOLR_FIELDS if k in record.__dict__]
        return f"{line} {' '.join(solr)}" if solr else line


def configure_logging(level: int = logging.INFO, json_format: bool = True) -> logging.Logger:
    """Attach a single stderr handler to the ``solrwire`` logger.

    Calling it again replaces the previous handler. Returns the configured
    logger.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter() if json_format else TextFormatter())
    handler.addFilter(_RequestIdFilter())

    root = logging.getLogger(LOGGER_NAME)
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    root.propagate = False
    return root
