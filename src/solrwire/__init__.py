"""solrwire: Solr query building, JSON response decoding and a thin HTTP client."""

from solrwire.client import SolrClient
from solrwire.config import SolrConfig
from solrwire.logging import bind_request_id, configure_logging, get_request_id, request_scope
from solrwire.models import (
    ErrorDetail,
    InvalidHintError,
    InvalidNullPolicyError,
    ParamsRequiredError,
    PlainDetail,
    QueryValidationError,
    ResponseError,
    SolrConnectionError,
    SolrDecodeError,
    SolrError,
    SolrHTTPError,
    StructuredDetail,
    TooManyParamsError,
)
from solrwire.query import (
    CollapseParams,
    DebugType,
    DefType,
    ExpandOptions,
    Facet,
    GroupParams,
    Hint,
    NullPolicy,
    Operator,
    Query,
    ReadOptions,
    WriteOptions,
)
from solrwire.response import (
    FacetCounts,
    FieldGrouping,
    Group,
    PivotCount,
    QueryGrouping,
    Response,
    ResponseHeader,
    ResultSet,
    decode_response,
)
from solrwire.update import AtomicUpdate, CommitOptions, OptimizeOptions, UpdateBuilder

__version__ = "0.1.0"

__all__ = [
    "AtomicUpdate",
    "CollapseParams",
    "CommitOptions",
    "DebugType",
    "DefType",
    "ErrorDetail",
    "ExpandOptions",
    "Facet",
    "FacetCounts",
    "FieldGrouping",
    "Group",
    "GroupParams",
    "Hint",
    "InvalidHintError",
    "InvalidNullPolicyError",
    "NullPolicy",
    "Operator",
    "OptimizeOptions",
    "ParamsRequiredError",
    "PivotCount",
    "PlainDetail",
    "Query",
    "QueryGrouping",
    "QueryValidationError",
    "ReadOptions",
    "Response",
    "ResponseError",
    "ResponseHeader",
    "ResultSet",
    "SolrClient",
    "SolrConfig",
    "SolrConnectionError",
    "SolrDecodeError",
    "SolrError",
    "SolrHTTPError",
    "StructuredDetail",
    "TooManyParamsError",
    "UpdateBuilder",
    "WriteOptions",
    "__version__",
    "bind_request_id",
    "configure_logging",
    "decode_response",
    "get_request_id",
    "request_scope",
]
