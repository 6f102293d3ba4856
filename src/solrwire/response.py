"""
Decoding of Solr JSON response envelopes.

The envelope's optional sections only appear when the matching feature was
requested, and several of them change shape depending on how it was
requested. Each polymorphic section has its own decode function that looks
at the runtime type of the raw value before committing to a target type:

* ``facet_counts.facet_fields`` holds flat ``[term, count, term, count, ...]``
  arrays. Decoding is permissive: a malformed pair is skipped.
* ``grouped`` maps each requested group key to either a field grouping
  (``groups`` array of ``groupValue`` / ``doclist``) or a query/function
  grouping (a bare ``doclist``).
* ``error.details`` entries are either strings or single-command objects.
  Decoding is strict: one malformed entry fails the whole decode.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from solrwire.models import (
    ErrorDetail,
    PlainDetail,
    ResponseError,
    SolrDecodeError,
    StructuredDetail,
)

logger = logging.getLogger(__name__)

_ERROR_MESSAGES_KEY = "errorMessages"


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ResponseHeader:
    """Populated on every response unless explicitly omitted."""

    status: int = 0
    qtime: int = 0
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ResultSet:
    """A document list: the main ``response`` section, a group's ``doclist``
    or one entry of ``expanded``."""

    num_found: int = 0
    start: int = 0
    docs: list[dict[str, Any]] = field(default_factory=list)
    max_score: float | None = None


@dataclass(frozen=True)
class PivotCount:
    field: str
    value: Any
    count: int
    pivot: list[PivotCount] = field(default_factory=list)


@dataclass(frozen=True)
class FacetCounts:
    """Facet results keyed by facet field, facet query and pivot path."""

    fields: dict[str, dict[str, int]] = field(default_factory=dict)
    queries: dict[str, int] = field(default_factory=dict)
    pivots: dict[str, list[PivotCount]] = field(default_factory=dict)

    def field_counts(self, name: str) -> dict[str, int]:
        """Return term counts for facet field *name* (empty if not faceted)."""
        return self.fields.get(name, {})


@dataclass(frozen=True)
class Group:
    value: Any
    doc_list: ResultSet


@dataclass(frozen=True)
class FieldGrouping:
    """Result of grouping by field (``group.field``)."""

    matches: int
    groups: list[Group]
    ngroups: int | None = None


@dataclass(frozen=True)
class QueryGrouping:
    """Result of grouping by a query or function (``group.query`` / ``group.func``)."""

    matches: int
    doc_list: ResultSet


Grouping = FieldGrouping | QueryGrouping


@dataclass(frozen=True)
class Response:
    """A decoded Solr response envelope.

    Only ``header`` is expected on every response; every other section is
    ``None`` (or empty) unless the request asked for it.
    """

    header: ResponseHeader | None = None
    data: ResultSet | None = None
    error: ResponseError | None = None
    debug: dict[str, Any] | None = None
    doc: dict[str, Any] | None = None
    status: str | None = None
    expanded: dict[str, ResultSet] = field(default_factory=dict)
    facet_counts: FacetCounts | None = None
    grouped: dict[str, Grouping] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _count(value: Any) -> int | None:
    """An integer, or an integral float such as ``5.0``; ``None`` otherwise."""
    if _is_int(value):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _as_int(value: Any, default: int = 0) -> int:
    count = _count(value)
    return default if count is None else count


def _require_mapping(value: Any, where: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise SolrDecodeError(
            f"Expected object for {where!r}, got {type(value).__name__}",
            raw_body=str(value),
        )
    return value


# ---------------------------------------------------------------------------
# Section decoders
# ---------------------------------------------------------------------------


def decode_header(raw: Any) -> ResponseHeader:
    raw = _require_mapping(raw, "responseHeader")
    params = raw.get("params")
    return ResponseHeader(
        status=_as_int(raw.get("status")),
        qtime=_as_int(raw.get("QTime")),
        params=dict(params) if isinstance(params, dict) else {},
    )


def decode_result_set(raw: Any, where: str = "response") -> ResultSet:
    raw = _require_mapping(raw, where)

    raw_docs = raw.get("docs", [])
    if not isinstance(raw_docs, list):
        raise SolrDecodeError(
            f"Expected list for '{where}.docs', got {type(raw_docs).__name__}",
            raw_body=str(raw),
        )

    docs: list[dict[str, Any]] = []
    for d in raw_docs:
        if not isinstance(d, dict):
            logger.warning("Skipping non-object document in %s", where)
            continue
        docs.append(d)

    max_score = raw.get("maxScore")
    return ResultSet(
        num_found=_as_int(raw.get("numFound")),
        start=_as_int(raw.get("start")),
        docs=docs,
        max_score=float(max_score) if isinstance(max_score, (int, float)) else None,
    )


def decode_term_counts(raw: Any) -> dict[str, int]:
    """Decode an alternating ``[term, count, ...]`` array.

    Pairs whose term is not a string or whose count is not integral are
    dropped, as is a dangling trailing element.
    """
    counts: dict[str, int] = {}
    if not isinstance(raw, list):
        return counts
    for i in range(0, len(raw) - 1, 2):
        term, count = raw[i], _count(raw[i + 1])
        if isinstance(term, str) and count is not None:
            counts[term] = count
    return counts


def _decode_pivot(raw: Any) -> PivotCount | None:
    if not isinstance(raw, dict):
        return None
    name, count = raw.get("field"), _count(raw.get("count"))
    if not isinstance(name, str) or count is None:
        return None
    children = raw.get("pivot", [])
    nested = [p for p in map(_decode_pivot, children if isinstance(children, list) else []) if p]
    return PivotCount(field=name, value=raw.get("value"), count=count, pivot=nested)


def decode_facet_counts(raw: Any) -> FacetCounts:
    raw = _require_mapping(raw, "facet_counts")

    fields: dict[str, dict[str, int]] = {}
    facet_fields = raw.get("facet_fields", {})
    if isinstance(facet_fields, dict):
        for name, values in facet_fields.items():
            if not isinstance(values, list):
                logger.debug("Skipping facet field %r with non-array counts", name)
                continue
            fields[name] = decode_term_counts(values)

    queries: dict[str, int] = {}
    facet_queries = raw.get("facet_queries", {})
    if isinstance(facet_queries, dict):
        for name, value in facet_queries.items():
            count = _count(value)
            if count is not None:
                queries[name] = count

    pivots: dict[str, list[PivotCount]] = {}
    facet_pivot = raw.get("facet_pivot", {})
    if isinstance(facet_pivot, dict):
        for path, entries in facet_pivot.items():
            if isinstance(entries, list):
                pivots[path] = [p for p in map(_decode_pivot, entries) if p]

    return FacetCounts(fields=fields, queries=queries, pivots=pivots)


def decode_grouping(key: str, raw: Any) -> Grouping:
    """Decode one ``grouped`` entry, picking the variant from its shape."""
    raw = _require_mapping(raw, f"grouped.{key}")
    matches = _as_int(raw.get("matches"))

    if "groups" in raw:
        raw_groups = raw["groups"]
        if not isinstance(raw_groups, list):
            raise SolrDecodeError(
                f"Expected list for 'grouped.{key}.groups', got {type(raw_groups).__name__}",
                raw_body=str(raw),
            )
        groups: list[Group] = []
        for g in raw_groups:
            g = _require_mapping(g, f"grouped.{key}.groups[]")
            groups.append(
                Group(
                    value=g.get("groupValue"),
                    doc_list=decode_result_set(g.get("doclist"), f"grouped.{key}.doclist"),
                )
            )
        ngroups = raw.get("ngroups")
        return FieldGrouping(
            matches=matches,
            groups=groups,
            ngroups=ngroups if _is_int(ngroups) else None,
        )

    if "doclist" in raw:
        return QueryGrouping(
            matches=matches,
            doc_list=decode_result_set(raw["doclist"], f"grouped.{key}.doclist"),
        )

    raise SolrDecodeError(
        f"Group {key!r} has neither 'groups' nor 'doclist'",
        raw_body=str(raw),
    )


def decode_error_detail(raw: Any) -> ErrorDetail:
    """Decode one ``error.details`` entry.

    A string is a :class:`PlainDetail`. An object must hold exactly two keys:
    ``errorMessages`` and the name of the failing command, whose value is the
    command item.
    """
    if isinstance(raw, str):
        return PlainDetail(raw)

    if not isinstance(raw, dict):
        raise SolrDecodeError(f"Unsupported error detail type {type(raw).__name__}", str(raw))

    commands = [k for k in raw if k != _ERROR_MESSAGES_KEY]
    if len(raw) != 2 or len(commands) != 1:
        raise SolrDecodeError(
            f"Malformed error detail with keys {sorted(raw)}; expected a command and "
            f"{_ERROR_MESSAGES_KEY!r}",
            raw_body=str(raw),
        )

    command = commands[0]
    item = raw[command]
    messages = raw[_ERROR_MESSAGES_KEY]
    return StructuredDetail(
        command=command,
        command_item=item if isinstance(item, dict) else {},
        messages=[m for m in messages if isinstance(m, str)] if isinstance(messages, list) else [],
    )


def decode_error(raw: Any) -> ResponseError:
    raw = _require_mapping(raw, "error")

    metadata = raw.get("metadata", [])
    details = raw.get("details", [])
    if not isinstance(details, list):
        raise SolrDecodeError(
            f"Expected list for 'error.details', got {type(details).__name__}",
            raw_body=str(raw),
        )

    msg = raw.get("msg")
    return ResponseError(
        msg if isinstance(msg, str) else "",
        code=_as_int(raw.get("code")),
        metadata=[m for m in metadata if isinstance(m, str)] if isinstance(metadata, list) else [],
        details=[decode_error_detail(d) for d in details],
    )


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


def _load(payload: bytes | str | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(payload, Mapping):
        return dict(payload)
    try:
        data = json.loads(payload)
    except (ValueError, UnicodeDecodeError) as exc:
        body = payload.decode("utf-8", errors="replace") if isinstance(payload, bytes) else payload
        raise SolrDecodeError(f"Invalid JSON in Solr response: {exc}", raw_body=body) from exc
    if not isinstance(data, dict):
        raise SolrDecodeError(
            f"Expected JSON object at top level, got {type(data).__name__}",
            raw_body=str(data),
        )
    return data


def decode_response(payload: bytes | str | Mapping[str, Any]) -> Response:
    """Decode a Solr JSON response into a :class:`Response`.

    Raises:
        SolrDecodeError: If the payload is not JSON or a structurally
            interpreted section has an unexpected shape.
        ResponseError: If the envelope carries an ``error``. The decoded
            envelope is attached as ``exc.response``.
    """
    data = _load(payload)

    header = decode_header(data["responseHeader"]) if data.get("responseHeader") is not None else None
    result = decode_result_set(data["response"]) if data.get("response") is not None else None
    error = decode_error(data["error"]) if data.get("error") is not None else None

    debug = data.get("debug")
    doc = data.get("doc")
    status = data.get("status")

    expanded: dict[str, ResultSet] = {}
    if data.get("expanded") is not None:
        raw_expanded = _require_mapping(data["expanded"], "expanded")
        expanded = {
            k: decode_result_set(v, f"expanded.{k}") for k, v in raw_expanded.items()
        }

    grouped: dict[str, Grouping] = {}
    if data.get("grouped") is not None:
        raw_grouped = _require_mapping(data["grouped"], "grouped")
        grouped = {k: decode_grouping(k, v) for k, v in raw_grouped.items()}

    facets = decode_facet_counts(data["facet_counts"]) if data.get("facet_counts") is not None else None

    response = Response(
        header=header,
        data=result,
        error=error,
        debug=debug if isinstance(debug, dict) else None,
        doc=doc if isinstance(doc, dict) else None,
        status=status if isinstance(status, str) else None,
        expanded=expanded,
        facet_counts=facets,
        grouped=grouped,
        raw=data,
    )

    if error is not None:
        error.response = response
        raise error
    return response
