"""
Solr client with persistent HTTP connections.

``SolrClient`` is a thin façade: each method assembles a path, a query string
and (for writes) a JSON body, sends it through ``httpx`` and hands the reply
to :func:`solrwire.response.decode_response`. Every method has an async
twin prefixed with ``a``.

Usage:
    from solrwire import Query, SolrClient, SolrConfig

    with SolrClient(SolrConfig(core="books")) as client:
        q = Query()
        q.add_term("genre", "horror")
        response = client.search(q)

    async with SolrClient(SolrConfig(core="books")) as client:
        response = await client.asearch(q)
"""

from __future__ import annotations

import importlib.metadata
import json
import logging
import time
from collections.abc import Mapping, Sequence
from contextlib import nullcontext
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import httpx

from solrwire.config import SolrConfig
from solrwire.logging import request_scope, solr_extra
from solrwire.models import (
    SolrConnectionError,
    SolrDecodeError,
    SolrError,
    SolrHTTPError,
)
from solrwire.query import OPTION_WT, RETURN_TYPE_JSON, Query, WriteOptions
from solrwire.response import Response, decode_response
from solrwire.update import AtomicUpdate, CommitOptions, OptimizeOptions, UpdateBuilder

logger = logging.getLogger(__name__)

try:
    _PKG_VERSION = importlib.metadata.version("solrwire")
except importlib.metadata.PackageNotFoundError:
    _PKG_VERSION = "dev"

_USER_AGENT = f"solrwire/{_PKG_VERSION}"

_otel_tracer: Any = None
try:
    from opentelemetry import trace

    _otel_tracer = trace.get_tracer("solrwire")
except ImportError:
    pass


# ---------------------------------------------------------------------------
# Request assembly
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _Call:
    method: str
    path: str
    query: str
    body: str | None = None


def _write_query(opts: WriteOptions | None) -> str:
    params = (opts or WriteOptions()).to_params()
    params[OPTION_WT] = RETURN_TYPE_JSON
    return urlencode(params)


def _json_body(payload: Any) -> str:
    return json.dumps(payload, default=str)


def _search_call(query: Query) -> _Call:
    return _Call("GET", "/select", query.encode())


def _ping_call() -> _Call:
    return _Call("GET", "/admin/ping", urlencode({OPTION_WT: RETURN_TYPE_JSON}))


def _get_call(doc_id: str) -> _Call:
    return _Call("GET", "/get", urlencode({"id": doc_id, OPTION_WT: RETURN_TYPE_JSON}))


def _batch_get_call(ids: Sequence[str], filter: str | None) -> _Call:
    params = {"ids": ",".join(ids)}
    if filter:
        params["fq"] = filter
    params[OPTION_WT] = RETURN_TYPE_JSON
    return _Call("GET", "/get", urlencode(params))


def _create_call(doc: Mapping[str, Any], opts: WriteOptions | None) -> _Call:
    if not isinstance(doc, Mapping):
        raise TypeError(f"document must be a mapping, got {type(doc).__name__}")
    return _Call("POST", "/update/json/docs", _write_query(opts), _json_body(dict(doc)))


def _batch_create_call(docs: Sequence[Mapping[str, Any]], opts: WriteOptions | None) -> _Call:
    if isinstance(docs, (str, bytes)) or not isinstance(docs, Sequence):
        raise TypeError(f"documents must be a sequence of mappings, got {type(docs).__name__}")
    bad = [i for i, d in enumerate(docs) if not isinstance(d, Mapping)]
    if bad:
        raise TypeError(f"documents at positions {bad} are not mappings")
    return _Call("POST", "/update", _write_query(opts), _json_body([dict(d) for d in docs]))


def _update_call(builder: UpdateBuilder, opts: WriteOptions | None) -> _Call:
    if not len(builder):
        raise ValueError("update builder holds no commands")
    return _Call("POST", "/update", _write_query(opts), builder.encode())


def _elapsed_ms(t0: float) -> float:
    return (time.monotonic() - t0) * 1000


def _otel_span(name: str, path: str, base_path: str) -> Any:
    """Return an OTel span context manager, or nullcontext if OTel is absent."""
    if _otel_tracer is not None:
        return _otel_tracer.start_as_current_span(
            name,
            attributes={"solr.path": path, "solr.base_path": base_path},
        )
    return nullcontext()


def _handle_http_error(
    exc: httpx.HTTPError, call: _Call, t0: float, base_path: str, core: str
) -> None:
    """Map httpx exceptions to solrwire exceptions. Always raises."""
    extra = solr_extra(core, call.method, call.path, elapsed_ms=_elapsed_ms(t0))

    if isinstance(exc, httpx.ConnectError):
        logger.warning("Solr connection failed: %s", exc, extra=extra)
        raise SolrConnectionError(f"Cannot connect to Solr at {base_path}: {exc}") from exc

    if isinstance(exc, httpx.TimeoutException):
        logger.warning("Solr timeout: %s", exc, extra=extra)
        raise SolrConnectionError(f"Timeout talking to Solr at {base_path}: {exc}") from exc

    if isinstance(exc, httpx.DecodingError):
        logger.warning("Solr decoding error: %s", exc, extra=extra)
        raise SolrDecodeError(f"Failed to decode Solr response: {exc}") from exc

    logger.warning("Solr request error: %s", exc, extra=extra)
    raise SolrConnectionError(f"Solr request failed: {exc}") from exc


def _finalize(resp: httpx.Response, call: _Call, t0: float, core: str) -> Response:
    """Decode the reply, falling back to an HTTP error when it carries no envelope."""
    extra = solr_extra(core, call.method, call.path, status=resp.status_code)
    try:
        decoded = decode_response(resp.content)
    except SolrDecodeError as exc:
        extra["elapsed_ms"] = round(_elapsed_ms(t0), 1)
        if resp.is_error:
            logger.warning("Solr HTTP error without a JSON body", extra=extra)
            raise SolrHTTPError(resp.status_code, resp.text[:500]) from exc
        logger.warning("Solr response could not be decoded: %s", exc, extra=extra)
        raise
    except SolrError as exc:
        extra["elapsed_ms"] = round(_elapsed_ms(t0), 1)
        logger.warning("Solr reported error: %s", exc, extra=extra)
        raise

    extra["elapsed_ms"] = round(_elapsed_ms(t0), 1)
    if resp.is_error:
        logger.warning("Solr HTTP error without an error envelope", extra=extra)
        raise SolrHTTPError(resp.status_code, resp.text[:500])

    if decoded.data is not None:
        extra["num_found"] = decoded.data.num_found
    logger.info("Solr call ok", extra=extra)
    return decoded


# ---------------------------------------------------------------------------
# SolrClient
# ---------------------------------------------------------------------------


class SolrClient:
    """Persistent client for one Solr core with sync and async methods.

    Holds an ``httpx.Client`` with connection pooling, and an
    ``httpx.AsyncClient`` created by the first ``a``-method call. Each call
    runs in a :func:`~solrwire.logging.request_scope`. Write methods do not
    commit unless asked to through :class:`~solrwire.query.WriteOptions` or
    :meth:`commit`.
    """

    def __init__(
        self,
        config: SolrConfig | None = None,
        *,
        _sync_transport: httpx.BaseTransport | None = None,
        _async_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or SolrConfig.from_env()
        self._base_path = self._config.base_path

        timeout = httpx.Timeout(
            connect=self._config.timeout_connect,
            read=self._config.timeout_read,
            pool=self._config.timeout_pool,
            write=self._config.timeout_read,
        )
        headers = {
            "Accept": "application/json",
            "User-Agent": _USER_AGENT,
        }

        transport = _sync_transport or httpx.HTTPTransport(
            retries=self._config.retries,
            verify=self._config.verify_ssl,  # type: ignore[arg-type]
        )
        self._sync_client = httpx.Client(
            transport=transport,
            timeout=timeout,
            headers=headers,
            auth=self._config.auth,
        )

        # Built on first async call; a sync-only client never opens an async pool.
        self._async_transport = _async_transport
        self._async_kwargs: dict[str, Any] = {
            "timeout": timeout,
            "headers": headers,
            "auth": self._config.auth,
        }
        self._async_client: httpx.AsyncClient | None = None

        self._closed = False
        logger.debug(
            "SolrClient created base_path=%s timeout_read=%.1f retries=%d",
            self._base_path,
            self._config.timeout_read,
            self._config.retries,
        )

    @property
    def config(self) -> SolrConfig:
        return self._config

    @property
    def base_path(self) -> str:
        return self._base_path

    def _url(self, call: _Call) -> str:
        url = f"{self._base_path}{call.path}"
        return f"{url}?{call.query}" if call.query else url

    def _request_kwargs(self, call: _Call) -> dict[str, Any]:
        if call.body is None:
            return {}
        return {"content": call.body, "headers": {"Content-Type": "application/json"}}

    def _get_async_client(self) -> httpx.AsyncClient:
        if self._async_client is None:
            transport = self._async_transport or httpx.AsyncHTTPTransport(
                retries=self._config.retries,
                verify=self._config.verify_ssl,  # type: ignore[arg-type]
            )
            self._async_client = httpx.AsyncClient(transport=transport, **self._async_kwargs)
        return self._async_client

    def _execute(self, call: _Call) -> Response:
        if self._closed:
            raise RuntimeError("SolrClient is closed")

        core = self._config.core
        span = _otel_span(f"solr{call.path.replace('/', '.')}", call.path, self._base_path)
        with request_scope(), span:
            logger.debug(
                "Solr request ?%s", call.query, extra=solr_extra(core, call.method, call.path)
            )
            t0 = time.monotonic()
            try:
                resp = self._sync_client.request(
                    call.method, self._url(call), **self._request_kwargs(call)
                )
            except httpx.HTTPError as exc:
                _handle_http_error(exc, call, t0, self._base_path, core)
                raise  # unreachable
            return _finalize(resp, call, t0, core)

    async def _aexecute(self, call: _Call) -> Response:
        if self._closed:
            raise RuntimeError("SolrClient is closed")

        core = self._config.core
        client = self._get_async_client()
        span = _otel_span(f"solr{call.path.replace('/', '.')}", call.path, self._base_path)
        with request_scope(), span:
            logger.debug(
                "Solr async request ?%s", call.query, extra=solr_extra(core, call.method, call.path)
            )
            t0 = time.monotonic()
            try:
                resp = await client.request(
                    call.method, self._url(call), **self._request_kwargs(call)
                )
            except httpx.HTTPError as exc:
                _handle_http_error(exc, call, t0, self._base_path, core)
                raise  # unreachable
            return _finalize(resp, call, t0, core)

    @staticmethod
    def _check_ping(response: Response) -> Response:
        if response.status is not None and response.status != "OK":
            raise SolrError(f"error pinging solr, status: {response.status}")
        return response

    # -- Reads ---------------------------------------------------------------

    def ping(self) -> Response:
        """Check that the core answers; raises unless the ping status is ``OK``."""
        return self._check_ping(self._execute(_ping_call()))

    async def aping(self) -> Response:
        return self._check_ping(await self._aexecute(_ping_call()))

    def search(self, query: Query) -> Response:
        """Run *query* against the ``/select`` handler."""
        return self._execute(_search_call(query))

    async def asearch(self, query: Query) -> Response:
        return await self._aexecute(_search_call(query))

    def get(self, doc_id: str) -> Response:
        """Real-time get of one document; it is returned in ``Response.doc``."""
        return self._execute(_get_call(doc_id))

    async def aget(self, doc_id: str) -> Response:
        return await self._aexecute(_get_call(doc_id))

    def batch_get(self, ids: Sequence[str], filter: str | None = None) -> Response:
        """Real-time get of several documents, optionally filtered with an ``fq`` expression."""
        return self._execute(_batch_get_call(ids, filter))

    async def abatch_get(self, ids: Sequence[str], filter: str | None = None) -> Response:
        return await self._aexecute(_batch_get_call(ids, filter))

    # -- Writes --------------------------------------------------------------

    def create(self, doc: Mapping[str, Any], opts: WriteOptions | None = None) -> Response:
        """Index a single JSON document through ``/update/json/docs``."""
        return self._execute(_create_call(doc, opts))

    async def acreate(self, doc: Mapping[str, Any], opts: WriteOptions | None = None) -> Response:
        return await self._aexecute(_create_call(doc, opts))

    def batch_create(
        self, docs: Sequence[Mapping[str, Any]], opts: WriteOptions | None = None
    ) -> Response:
        return self._execute(_batch_create_call(docs, opts))

    async def abatch_create(
        self, docs: Sequence[Mapping[str, Any]], opts: WriteOptions | None = None
    ) -> Response:
        return await self._aexecute(_batch_create_call(docs, opts))

    def update(self, item: AtomicUpdate, opts: WriteOptions | None = None) -> Response:
        """Apply an atomic update to one document."""
        return self._execute(_update_call(UpdateBuilder().add(item.to_dict()), opts))

    async def aupdate(self, item: AtomicUpdate, opts: WriteOptions | None = None) -> Response:
        return await self._aexecute(_update_call(UpdateBuilder().add(item.to_dict()), opts))

    def delete_by_id(self, doc_id: str, opts: WriteOptions | None = None) -> Response:
        return self._execute(_update_call(UpdateBuilder().delete_by_id(doc_id), opts))

    async def adelete_by_id(self, doc_id: str, opts: WriteOptions | None = None) -> Response:
        return await self._aexecute(_update_call(UpdateBuilder().delete_by_id(doc_id), opts))

    def delete_by_query(self, query: str, opts: WriteOptions | None = None) -> Response:
        return self._execute(_update_call(UpdateBuilder().delete_by_query(query), opts))

    async def adelete_by_query(self, query: str, opts: WriteOptions | None = None) -> Response:
        return await self._aexecute(_update_call(UpdateBuilder().delete_by_query(query), opts))

    def clear(self) -> Response:
        """Delete every document in the core and commit. Use with care."""
        return self.delete_by_query("*:*", WriteOptions(commit=True))

    async def aclear(self) -> Response:
        return await self.adelete_by_query("*:*", WriteOptions(commit=True))

    def commit(self, opts: CommitOptions | None = None) -> Response:
        return self._execute(_update_call(UpdateBuilder().commit(opts), None))

    async def acommit(self, opts: CommitOptions | None = None) -> Response:
        return await self._aexecute(_update_call(UpdateBuilder().commit(opts), None))

    def rollback(self) -> Response:
        """Discard all uncommitted changes."""
        return self._execute(_update_call(UpdateBuilder().rollback(), None))

    async def arollback(self) -> Response:
        return await self._aexecute(_update_call(UpdateBuilder().rollback(), None))

    def optimize(self, opts: OptimizeOptions | None = None) -> Response:
        return self._execute(_update_call(UpdateBuilder().optimize(opts), None))

    async def aoptimize(self, opts: OptimizeOptions | None = None) -> Response:
        return await self._aexecute(_update_call(UpdateBuilder().optimize(opts), None))

    def custom_update(self, builder: UpdateBuilder, opts: WriteOptions | None = None) -> Response:
        """Send several update commands in one request."""
        return self._execute(_update_call(builder, opts))

    async def acustom_update(
        self, builder: UpdateBuilder, opts: WriteOptions | None = None
    ) -> Response:
        return await self._aexecute(_update_call(builder, opts))

    # -- Lifecycle -----------------------------------------------------------

    def close(self) -> None:
        """Close the sync HTTP client.

        An async pool opened by an ``a``-method can only be released with
        :meth:`aclose`; a warning is logged if one is still open.
        """
        if self._async_client is not None and not self._async_client.is_closed:
            logger.warning("SolrClient.close() leaves async connections open; use aclose()")
        if not self._closed:
            self._sync_client.close()
            self._closed = True
            logger.debug("SolrClient closed base_path=%s", self._base_path)

    async def aclose(self) -> None:
        """Close both HTTP clients."""
        if self._async_client is not None and not self._async_client.is_closed:
            await self._async_client.aclose()
        if not self._closed:
            self._sync_client.close()
            self._closed = True
            logger.debug("SolrClient closed (async) base_path=%s", self._base_path)

    def __enter__(self) -> SolrClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    async def __aenter__(self) -> SolrClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()
