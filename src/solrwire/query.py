"""
Search query construction for Solr's ``/select`` handler.

A :class:`Query` accumulates parameters and serializes them into the flat,
URL-encoded ``key=value`` form Solr expects, repeating multi-valued keys in
the order they were added::

    q = Query(ReadOptions(rows=10))
    q.add_term("genre", "horror")
    q.add_filter("year", "[1980 TO *]")
    q.collapse(CollapseParams(field="director", sort="year desc"))
    url = f"{base_path}/select?{q.encode()}"

The response format is always forced to JSON, the only format the decoder in
:mod:`solrwire.response` understands.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import urlencode

from solrwire.models import (
    InvalidHintError,
    InvalidNullPolicyError,
    ParamsRequiredError,
    TooManyParamsError,
)

logger = logging.getLogger(__name__)

OPTION_DEBUG = "debug"
OPTION_DEF_TYPE = "defType"
OPTION_Q = "q"
OPTION_FILTER = "fq"
OPTION_FIELD_LIST = "fl"
OPTION_ROWS = "rows"
OPTION_START = "start"
OPTION_SORT = "sort"
OPTION_WT = "wt"
OPTION_COMMIT = "commit"
OPTION_OVERWRITE = "overwrite"
OPTION_COMMIT_WITHIN = "commitWithin"
OPTION_MM = "mm"
OPTION_BOOST = "boost"
OPTION_QUERY_FIELDS = "qf"
OPTION_BOOST_QUERY = "bq"
OPTION_BOOST_FUNCTIONS = "bf"
OPTION_USER_FIELDS = "uf"
OPTION_EXPAND = "expand"
OPTION_EXPAND_SORT = "expand.sort"
OPTION_EXPAND_Q = "expand.q"
OPTION_EXPAND_FQ = "expand.fq"
OPTION_EXPAND_ROWS = "expand.rows"
OPTION_FACET = "facet"
OPTION_FACET_FIELD = "facet.field"
OPTION_FACET_PIVOT = "facet.pivot"
OPTION_FACET_PIVOT_MINCOUNT = "facet.pivot.mincount"
OPTION_GROUP = "group"
OPTION_GROUP_FIELD = "group.field"
OPTION_GROUP_NGROUPS = "group.ngroups"
OPTION_GROUP_LIMIT = "group.limit"
OPTION_GROUP_OFFSET = "group.offset"
OPTION_GROUP_QUERY = "group.query"
OPTION_GROUP_FUNC = "group.func"
OPTION_GROUP_SORT = "group.sort"

RETURN_TYPE_JSON = "json"

# Characters left unescaped in the encoded query string so that Lucene
# syntax such as ``q=*:*`` stays readable in logs and server echoes.
_SAFE_CHARS = ":*"


def _as_tuple(value: str | Iterable[str]) -> tuple[str, ...]:
    """A bare string is one value, not a sequence of characters."""
    if isinstance(value, str):
        return (value,) if value else ()
    return tuple(value)


class _ClosedSet(str, Enum):
    """A small closed set of string values with a validity predicate."""

    @classmethod
    def is_valid(cls, value: object) -> bool:
        try:
            cls(value)
        except ValueError:
            return False
        return True

    def __str__(self) -> str:
        return self.value


class Operator(_ClosedSet):
    OR = "OR"
    AND = "AND"


class DebugType(_ClosedSet):
    QUERY = "query"
    TIMING = "timing"
    RESULTS = "results"
    ALL = "all"


class DefType(_ClosedSet):
    DISMAX = "dismax"
    EDISMAX = "edismax"
    STANDARD = "lucene"


class NullPolicy(_ClosedSet):
    IGNORE = "ignore"
    EXPAND = "expand"
    COLLAPSE = "collapse"


class Hint(_ClosedSet):
    TOP_FC = "top_fc"


# ---------------------------------------------------------------------------
# Option types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReadOptions:
    """Options applied when a :class:`Query` is created.

    Args:
        debug: Debug component output to request.
        def_type: Query parser (default ``lucene`` on the server).
        rows: Number of documents to return; only sent when > 0.
    """

    debug: DebugType | str | None = None
    def_type: DefType | str | None = None
    rows: int = 0


@dataclass(frozen=True)
class WriteOptions:
    """Options for write requests.

    Args:
        commit: Commit all changes alongside the request.
        commit_within: Commit within this many milliseconds (sent when > 0).
        allow_duplicate: Allow uniqueKey duplication (``overwrite=false``).
    """

    commit: bool = False
    commit_within: int = 0
    allow_duplicate: bool = False

    def to_params(self) -> dict[str, str]:
        params: dict[str, str] = {}
        if self.commit:
            params[OPTION_COMMIT] = "true"
        if self.commit_within > 0:
            params[OPTION_COMMIT_WITHIN] = str(self.commit_within)
        if self.allow_duplicate:
            params[OPTION_OVERWRITE] = "false"
        return params


@dataclass(frozen=True)
class CollapseParams:
    """Parameters of the Collapsing query parser post filter.

    ``field`` is required and at most one of ``min``, ``max`` and ``sort``
    may be set.
    """

    field: str
    min: str = ""
    max: str = ""
    sort: str = ""
    null_policy: NullPolicy | str | None = None
    hint: Hint | str | None = None
    size: int | str | None = None

    def format(self) -> str:
        """Validate and render as a ``{!collapse ...}`` local-params string."""
        if not self.field:
            raise ParamsRequiredError("param field is required for the collapsing query parser")

        parts = [f"field={self.field}"]
        selectors = [("max", self.max), ("min", self.min), ("sort", self.sort)]
        chosen = [(k, v) for k, v in selectors if v]
        if len(chosen) > 1:
            raise TooManyParamsError()
        parts.extend(f"{k}={v}" for k, v in chosen)

        if self.null_policy is not None:
            if not NullPolicy.is_valid(self.null_policy):
                raise InvalidNullPolicyError(self.null_policy)
            parts.append(f"nullPolicy={NullPolicy(self.null_policy)}")

        if self.hint is not None:
            if not Hint.is_valid(self.hint):
                raise InvalidHintError(self.hint)
            parts.append(f"hint={Hint(self.hint)}")

        if self.size is not None and self.size != "":
            parts.append(f"size={self.size}")

        return f"{{!collapse {' '.join(parts)}}}"


@dataclass(frozen=True)
class ExpandOptions:
    """Overrides for the expand component; all optional."""

    sort: str = ""
    rows: int = 0
    q: str = ""
    fq: str = ""


@dataclass(frozen=True)
class Facet:
    """A field facet with its field-scoped options.

    Only options that are set are sent, as ``f.<field>.facet.<option>``.
    """

    field: str
    prefix: str = ""
    contains: str = ""
    limit: int | None = None
    min_count: int | None = None
    missing: bool = False
    exclude_terms: str | Sequence[str] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "exclude_terms", _as_tuple(self.exclude_terms))

    def scoped(self, option: str) -> str:
        return f"f.{self.field}.facet.{option}"


@dataclass(frozen=True)
class GroupParams:
    """Result grouping parameters.

    At least one of ``field``, ``queries`` or ``functions`` is required.
    They may be combined freely.
    """

    field: str = ""
    queries: str | Sequence[str] = ()
    functions: str | Sequence[str] = ()
    limit: int | None = None
    offset: int | None = None
    sort: str = ""
    show_group_count: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "queries", _as_tuple(self.queries))
        object.__setattr__(self, "functions", _as_tuple(self.functions))


# ---------------------------------------------------------------------------
# Query
# ---------------------------------------------------------------------------


class Query:
    """Accumulator for the parameters of one search request.

    A query is meant to be owned by a single request; it is not safe to
    mutate from several threads at once.
    """

    def __init__(self, opts: ReadOptions | None = None) -> None:
        self._terms: list[str] = []
        self._operator = Operator.OR
        self._params: dict[str, list[str]] = {}

        if opts is None:
            return
        if opts.debug:
            if DebugType.is_valid(opts.debug):
                self.set_param(OPTION_DEBUG, str(DebugType(opts.debug)))
            else:
                logger.warning("Ignoring invalid debug type %r", opts.debug)
        if opts.def_type:
            if DefType.is_valid(opts.def_type):
                self.set_param(OPTION_DEF_TYPE, str(DefType(opts.def_type)))
            else:
                logger.warning("Ignoring invalid defType %r", opts.def_type)
        if opts.rows > 0:
            self.set_param(OPTION_ROWS, str(opts.rows))

    # -- Raw parameters ------------------------------------------------------

    def add_param(self, key: str, value: str) -> None:
        """Append *value* to the values of *key*."""
        self._params.setdefault(key, []).append(value)

    def set_param(self, key: str, value: str) -> None:
        """Replace all values of *key* with *value*."""
        self._params[key] = [value]

    def del_param(self, key: str) -> None:
        self._params.pop(key, None)

    def get_param(self, key: str) -> str | None:
        """Return the first value of *key*, or ``None``."""
        values = self._params.get(key)
        return values[0] if values else None

    def get_params(self, key: str) -> list[str]:
        return list(self._params.get(key, []))

    @property
    def terms(self) -> list[str]:
        return list(self._terms)

    @property
    def operator(self) -> Operator:
        return self._operator

    # -- q -------------------------------------------------------------------

    def add_term(self, field: str, value: str) -> None:
        """Add a ``field:value`` term, or a bare free-text term when *field* is empty.

        Terms are joined with the current operator at serialization. Adding a
        term discards any literal query set with :meth:`set_query`.
        """
        self._params.pop(OPTION_Q, None)
        self._terms.append(f"{field}:{value}" if field else value)

    def set_query(self, value: str) -> None:
        """Set the literal ``q`` parameter, discarding accumulated terms."""
        self._terms.clear()
        self.set_param(OPTION_Q, value)

    def clear_query(self) -> None:
        self._terms.clear()
        self._params.pop(OPTION_Q, None)

    def set_operator(self, operator: Operator | str) -> None:
        """Set how terms added with :meth:`add_term` are joined (``AND`` / ``OR``)."""
        self._operator = Operator(operator)

    # -- Common parameters ---------------------------------------------------

    def add_filter(self, field: str, value: str) -> None:
        self.add_param(OPTION_FILTER, f"{field}:{value}")

    def set_filter(self, value: str) -> None:
        """Replace every filter query with one literal expression."""
        self.set_param(OPTION_FILTER, value)

    def add_field(self, name: str) -> None:
        """Add *name* to the returned field list (``fl``)."""
        self.add_param(OPTION_FIELD_LIST, name)

    def set_start(self, start: int) -> None:
        self.set_param(OPTION_START, str(start))

    def set_rows(self, rows: int) -> None:
        self.set_param(OPTION_ROWS, str(rows))

    def set_result_window(self, start: int, rows: int) -> None:
        self.set_start(start)
        self.set_rows(rows)

    def set_sort(self, value: str) -> None:
        """Set the sort expression, e.g. ``"year desc, title asc"``."""
        self.set_param(OPTION_SORT, value)

    # -- DisMax / eDisMax ----------------------------------------------------

    def set_query_fields(self, fields: Iterable[str]) -> None:
        self.set_param(OPTION_QUERY_FIELDS, " ".join(fields))

    def set_minimum_should_match(self, value: str) -> None:
        self.set_param(OPTION_MM, value)

    def set_boost_functions(self, value: str) -> None:
        self.set_param(OPTION_BOOST_FUNCTIONS, value)

    def set_boost_query(self, value: str) -> None:
        self.set_param(OPTION_BOOST_QUERY, value)

    def set_boost(self, value: str) -> None:
        """Set the multiplicative ``boost`` function (eDisMax only)."""
        self.set_param(OPTION_BOOST, value)

    def set_user_fields(self, fields: Iterable[str]) -> None:
        """Set the fields users may query explicitly (eDisMax only)."""
        self.set_param(OPTION_USER_FIELDS, " ".join(fields))

    # -- Collapse / expand ---------------------------------------------------

    def collapse(self, params: CollapseParams | None) -> None:
        """Add a collapsing post filter to ``fq``.

        Raises:
            ParamsRequiredError: If *params* is missing or has no field.
            TooManyParamsError: If more than one of min, max, sort is set.
            InvalidNullPolicyError, InvalidHintError: On unknown enum values.
        """
        if params is None:
            raise ParamsRequiredError("param field is required for the collapsing query parser")
        self.add_param(OPTION_FILTER, params.format())

    def expand(self, opts: ExpandOptions | None = None) -> None:
        """Enable the expand component, optionally overriding its sort, query,
        filter and row count."""
        self.set_param(OPTION_EXPAND, "true")
        if opts is None:
            return
        if opts.sort:
            self.set_param(OPTION_EXPAND_SORT, opts.sort)
        if opts.q:
            self.set_param(OPTION_EXPAND_Q, opts.q)
        if opts.fq:
            self.set_param(OPTION_EXPAND_FQ, opts.fq)
        if opts.rows > 0:
            self.set_param(OPTION_EXPAND_ROWS, str(opts.rows))

    # -- Faceting ------------------------------------------------------------

    def add_facet(self, facet: Facet) -> None:
        if not facet.field:
            raise ParamsRequiredError("param field is required for a facet")

        self.set_param(OPTION_FACET, "true")
        self.add_param(OPTION_FACET_FIELD, facet.field)
        if facet.limit is not None:
            self.set_param(facet.scoped("limit"), str(facet.limit))
        if facet.min_count is not None:
            self.set_param(facet.scoped("mincount"), str(facet.min_count))
        if facet.prefix:
            self.set_param(facet.scoped("prefix"), facet.prefix)
        if facet.contains:
            self.set_param(facet.scoped("contains"), facet.contains)
        if facet.missing:
            self.set_param(facet.scoped("missing"), "true")
        if facet.exclude_terms:
            self.set_param(facet.scoped("excludeTerms"), ",".join(facet.exclude_terms))

    def add_facet_pivot(self, fields: str | Sequence[str], min_count: int = 0) -> None:
        """Add a pivot facet over *fields* (a comma separated string or a sequence).

        A *min_count* below 2 leaves the server default of 1 in place.
        """
        path = ",".join(_as_tuple(fields))
        self.set_param(OPTION_FACET, "true")
        self.add_param(OPTION_FACET_PIVOT, path)
        if min_count > 1:
            self.set_param(OPTION_FACET_PIVOT_MINCOUNT, str(min_count))

    # -- Grouping ------------------------------------------------------------

    def group(self, params: GroupParams | None) -> None:
        """Enable result grouping.

        Raises:
            ParamsRequiredError: If none of field, queries or functions is set.
        """
        if params is None or not (params.field or params.queries or params.functions):
            raise ParamsRequiredError("one of field, queries or functions is required for grouping")

        self.set_param(OPTION_GROUP, "true")
        if params.field:
            self.set_param(OPTION_GROUP_FIELD, params.field)
        if params.show_group_count:
            self.set_param(OPTION_GROUP_NGROUPS, "true")
        if params.limit is not None:
            self.set_param(OPTION_GROUP_LIMIT, str(params.limit))
        if params.offset is not None:
            self.set_param(OPTION_GROUP_OFFSET, str(params.offset))
        if params.sort:
            self.set_param(OPTION_GROUP_SORT, params.sort)
        for q in params.queries:
            self.add_param(OPTION_GROUP_QUERY, q)
        for fn in params.functions:
            self.add_param(OPTION_GROUP_FUNC, fn)

    # -- Serialization -------------------------------------------------------

    def to_params(self) -> list[tuple[str, str]]:
        """Return the parameters as ordered ``(key, value)`` pairs.

        Accumulated terms become ``q`` and ``wt`` is forced to ``json`` in the
        output only; the query itself is left untouched.
        """
        params = {k: list(v) for k, v in self._params.items()}
        if self._terms:
            params[OPTION_Q] = [f" {self._operator} ".join(self._terms)]
        params[OPTION_WT] = [RETURN_TYPE_JSON]
        return [(k, v) for k, values in params.items() for v in values]

    def encode(self) -> str:
        """Serialize to a URL-encoded query string."""
        return urlencode(self.to_params(), safe=_SAFE_CHARS)

    def __str__(self) -> str:
        return self.encode()

    def __repr__(self) -> str:
        return f"Query({self.encode()!r})"
