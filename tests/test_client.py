"""Tests for solrwire.client -- SolrClient request assembly and error mapping.

Uses httpx MockTransport so no real Solr or network is required.
"""

from __future__ import annotations

import json
import logging
from urllib.parse import parse_qs

import httpx
import pytest

from solrwire.client import SolrClient
from solrwire.config import SolrConfig
from solrwire.logging import JSONFormatter, get_request_id, request_scope
from solrwire.models import (
    ResponseError,
    SolrConnectionError,
    SolrDecodeError,
    SolrError,
    SolrHTTPError,
)
from solrwire.query import Query, WriteOptions
from solrwire.update import AtomicUpdate, CommitOptions, OptimizeOptions, UpdateBuilder


SELECT_OK = {
    "responseHeader": {"status": 0, "QTime": 3},
    "response": {
        "numFound": 1,
        "start": 0,
        "docs": [{"id": "book-1", "title": "Dracula", "genre": "horror"}],
    },
}

UPDATE_OK = {"responseHeader": {"status": 0, "QTime": 12}}

SOLR_ERROR = {
    "responseHeader": {"status": 400, "QTime": 1},
    "error": {
        "metadata": ["error-class", "org.apache.solr.common.SolrException"],
        "msg": "undefined field genre_s",
        "code": 400,
    },
}

CONFIG = SolrConfig(core="books", host="http://solr:8983")


def _mock_handler(json_data: dict, status: int = 200):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json=json_data)

    return handler


def _recording_handler(seen: list[httpx.Request], json_data: dict | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=json_data if json_data is not None else UPDATE_OK)

    return handler


def _params(request: httpx.Request) -> dict[str, list[str]]:
    return parse_qs(request.url.query.decode())


class TestSolrClientReads:
    def _make_client(self, json_data: dict, status: int = 200) -> SolrClient:
        transport = httpx.MockTransport(_mock_handler(json_data, status))
        return SolrClient(CONFIG, _sync_transport=transport)

    def test_search_returns_decoded_response(self) -> None:
        q = Query()
        q.add_term("genre", "horror")
        with self._make_client(SELECT_OK) as client:
            resp = client.search(q)

        assert resp.header.qtime == 3
        assert resp.data.num_found == 1
        assert resp.data.docs[0]["title"] == "Dracula"

    def test_search_url(self) -> None:
        seen: list[httpx.Request] = []
        q = Query()
        q.set_query("*:*")
        q.add_filter("genre", "horror")
        q.set_sort("year desc")
        transport = httpx.MockTransport(_recording_handler(seen, SELECT_OK))
        with SolrClient(CONFIG, _sync_transport=transport) as client:
            client.search(q)

        request = seen[0]
        assert request.method == "GET"
        assert request.url.path == "/solr/books/select"
        params = _params(request)
        assert params["q"] == ["*:*"]
        assert params["fq"] == ["genre:horror"]
        assert params["sort"] == ["year desc"]
        assert params["wt"] == ["json"]

    def test_headers(self) -> None:
        seen: list[httpx.Request] = []
        transport = httpx.MockTransport(_recording_handler(seen, SELECT_OK))
        with SolrClient(CONFIG, _sync_transport=transport) as client:
            client.search(Query())
        assert seen[0].headers["accept"] == "application/json"
        assert seen[0].headers["user-agent"].startswith("solrwire/")

    def test_basic_auth_sent(self) -> None:
        seen: list[httpx.Request] = []
        config = SolrConfig(core="books", host="http://solr:8983", username="solr", password="pw")
        transport = httpx.MockTransport(_recording_handler(seen, SELECT_OK))
        with SolrClient(config, _sync_transport=transport) as client:
            client.search(Query())
        assert seen[0].headers["authorization"].startswith("Basic ")

    def test_get(self) -> None:
        seen: list[httpx.Request] = []
        transport = httpx.MockTransport(
            _recording_handler(seen, {"doc": {"id": "book-1", "title": "Dracula"}})
        )
        with SolrClient(CONFIG, _sync_transport=transport) as client:
            resp = client.get("book-1")

        assert resp.doc == {"id": "book-1", "title": "Dracula"}
        assert seen[0].url.path == "/solr/books/get"
        assert _params(seen[0])["id"] == ["book-1"]

    def test_batch_get(self) -> None:
        seen: list[httpx.Request] = []
        transport = httpx.MockTransport(_recording_handler(seen, SELECT_OK))
        with SolrClient(CONFIG, _sync_transport=transport) as client:
            client.batch_get(["book-1", "book-2"], filter="genre:horror")

        params = _params(seen[0])
        assert params["ids"] == ["book-1,book-2"]
        assert params["fq"] == ["genre:horror"]

    def test_ping_ok(self) -> None:
        with self._make_client({"responseHeader": {"status": 0}, "status": "OK"}) as client:
            assert client.ping().status == "OK"

    def test_ping_not_ok(self) -> None:
        with self._make_client({"responseHeader": {"status": 0}, "status": "FAIL"}) as client:
            with pytest.raises(SolrError, match="FAIL"):
                client.ping()


class TestSolrClientWrites:
    def _run(self, call) -> httpx.Request:
        seen: list[httpx.Request] = []
        transport = httpx.MockTransport(_recording_handler(seen))
        with SolrClient(CONFIG, _sync_transport=transport) as client:
            call(client)
        assert len(seen) == 1
        return seen[0]

    def test_create(self) -> None:
        request = self._run(lambda c: c.create({"id": "book-1"}, WriteOptions(commit=True)))
        assert request.method == "POST"
        assert request.url.path == "/solr/books/update/json/docs"
        assert _params(request) == {"commit": ["true"], "wt": ["json"]}
        assert request.headers["content-type"] == "application/json"
        assert json.loads(request.content) == {"id": "book-1"}

    def test_create_rejects_non_mapping(self) -> None:
        with SolrClient(CONFIG, _sync_transport=httpx.MockTransport(_mock_handler(UPDATE_OK))) as client:
            with pytest.raises(TypeError):
                client.create(["book-1"])  # type: ignore[arg-type]

    def test_batch_create(self) -> None:
        request = self._run(
            lambda c: c.batch_create([{"id": "1"}, {"id": "2"}], WriteOptions(commit_within=500))
        )
        assert request.url.path == "/solr/books/update"
        assert _params(request)["commitWithin"] == ["500"]
        assert json.loads(request.content) == [{"id": "1"}, {"id": "2"}]

    def test_batch_create_rejects_bad_items(self) -> None:
        with SolrClient(CONFIG, _sync_transport=httpx.MockTransport(_mock_handler(UPDATE_OK))) as client:
            with pytest.raises(TypeError, match="positions"):
                client.batch_create([{"id": "1"}, "two"])  # type: ignore[list-item]

    def test_atomic_update(self) -> None:
        request = self._run(lambda c: c.update(AtomicUpdate("book-1").increment_by("views", 1)))
        assert json.loads(request.content) == {"add": {"doc": {"id": "book-1", "views": {"inc": 1}}}}

    def test_delete_by_id(self) -> None:
        request = self._run(lambda c: c.delete_by_id("book-1"))
        assert json.loads(request.content) == {"delete": {"id": "book-1"}}
        assert _params(request) == {"wt": ["json"]}

    def test_clear_commits(self) -> None:
        request = self._run(lambda c: c.clear())
        assert json.loads(request.content) == {"delete": {"query": "*:*"}}
        assert _params(request)["commit"] == ["true"]

    def test_commit_rollback_optimize(self) -> None:
        assert json.loads(self._run(lambda c: c.commit(CommitOptions(wait_searcher=False))).content) == {
            "commit": {"waitSearcher": False}
        }
        assert json.loads(self._run(lambda c: c.rollback()).content) == {"rollback": {}}
        assert json.loads(self._run(lambda c: c.optimize(OptimizeOptions(max_segments=2))).content) == {
            "optimize": {"maxSegments": 2}
        }

    def test_custom_update_keeps_repeated_commands(self) -> None:
        builder = UpdateBuilder().add({"id": "1"}).add({"id": "2"}).commit()
        request = self._run(lambda c: c.custom_update(builder))
        assert request.content.decode().count('"add"') == 2

    def test_empty_builder_rejected(self) -> None:
        with SolrClient(CONFIG, _sync_transport=httpx.MockTransport(_mock_handler(UPDATE_OK))) as client:
            with pytest.raises(ValueError, match="no commands"):
                client.custom_update(UpdateBuilder())


class TestSolrClientErrors:
    def test_solr_error_envelope(self) -> None:
        transport = httpx.MockTransport(_mock_handler(SOLR_ERROR, status=400))
        with SolrClient(CONFIG, _sync_transport=transport) as client:
            with pytest.raises(ResponseError) as exc_info:
                client.search(Query())
        assert str(exc_info.value) == "undefined field genre_s"
        assert exc_info.value.code == 400
        assert exc_info.value.response.header.status == 400

    def test_non_json_error_status(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="<html>Bad Gateway</html>")

        with SolrClient(CONFIG, _sync_transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(SolrHTTPError, match="502") as exc_info:
                client.search(Query())
        assert exc_info.value.status_code == 502
        assert isinstance(exc_info.value.__cause__, SolrDecodeError)

    def test_non_json_success_status(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="not json")

        with SolrClient(CONFIG, _sync_transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(SolrDecodeError, match="Invalid JSON"):
                client.search(Query())

    def test_error_status_without_error_field(self) -> None:
        transport = httpx.MockTransport(_mock_handler({"responseHeader": {"status": 0}}, status=503))
        with SolrClient(CONFIG, _sync_transport=transport) as client:
            with pytest.raises(SolrHTTPError, match="503"):
                client.search(Query())

    def test_connection_error(self, caplog: pytest.LogCaptureFixture) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused")

        with caplog.at_level(logging.WARNING, logger="solrwire.client"):
            with SolrClient(CONFIG, _sync_transport=httpx.MockTransport(handler)) as client:
                with pytest.raises(SolrConnectionError, match="Cannot connect") as exc_info:
                    client.search(Query())
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)
        assert "connection failed" in caplog.text

    def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out")

        with SolrClient(CONFIG, _sync_transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(SolrConnectionError, match="Timeout"):
                client.search(Query())

    def test_closed_client_raises(self) -> None:
        client = SolrClient(CONFIG, _sync_transport=httpx.MockTransport(_mock_handler(SELECT_OK)))
        client.close()
        client.close()
        with pytest.raises(RuntimeError, match="closed"):
            client.search(Query())

    def test_success_log_line_carries_solr_fields(self, caplog: pytest.LogCaptureFixture) -> None:
        transport = httpx.MockTransport(_mock_handler(SELECT_OK))
        with caplog.at_level(logging.INFO, logger="solrwire.client"):
            with SolrClient(CONFIG, _sync_transport=transport) as client, request_scope("search-42"):
                client.search(Query())
                lines = [json.loads(JSONFormatter().format(r)) for r in caplog.records]

        entry = next(e for e in lines if e["level"] == "INFO")
        assert entry["request_id"] == "search-42"
        assert entry["solr_core"] == "books"
        assert entry["solr_method"] == "GET"
        assert entry["solr_path"] == "/select"
        assert entry["status"] == 200
        assert entry["num_found"] == 1
        assert isinstance(entry["elapsed_ms"], float)

    def test_error_log_line_carries_status(self, caplog: pytest.LogCaptureFixture) -> None:
        transport = httpx.MockTransport(_mock_handler(SOLR_ERROR, status=400))
        with caplog.at_level(logging.WARNING, logger="solrwire.client"):
            with SolrClient(CONFIG, _sync_transport=transport) as client:
                with pytest.raises(ResponseError):
                    client.delete_by_id("book-1")

        entry = json.loads(JSONFormatter().format(caplog.records[-1]))
        assert entry["level"] == "WARNING"
        assert entry["solr_path"] == "/update"
        assert entry["solr_method"] == "POST"
        assert entry["status"] == 400
        assert "num_found" not in entry

    def test_request_scope_restored_after_call(self, caplog: pytest.LogCaptureFixture) -> None:
        transport = httpx.MockTransport(_mock_handler(SELECT_OK))
        with caplog.at_level(logging.DEBUG, logger="solrwire.client"):
            with SolrClient(CONFIG, _sync_transport=transport) as client:
                client.search(Query())
        assert get_request_id() == ""


class TestSolrClientLifecycle:
    def test_sync_use_never_opens_async_pool(self) -> None:
        client = SolrClient(CONFIG, _sync_transport=httpx.MockTransport(_mock_handler(SELECT_OK)))
        with client:
            client.search(Query())
        assert client._async_client is None
        assert client._sync_client.is_closed

    async def test_aclose_closes_both_pools(self) -> None:
        client = SolrClient(
            CONFIG,
            _sync_transport=httpx.MockTransport(_mock_handler(SELECT_OK)),
            _async_transport=httpx.MockTransport(_mock_handler(SELECT_OK)),
        )
        await client.asearch(Query())
        await client.aclose()
        assert client._async_client is not None
        assert client._async_client.is_closed
        assert client._sync_client.is_closed

    async def test_sync_close_after_async_use_warns(self, caplog: pytest.LogCaptureFixture) -> None:
        client = SolrClient(CONFIG, _async_transport=httpx.MockTransport(_mock_handler(SELECT_OK)))
        await client.asearch(Query())
        with caplog.at_level(logging.WARNING, logger="solrwire.client"):
            client.close()
        assert "aclose" in caplog.text
        await client.aclose()
        assert client._async_client.is_closed


class TestSolrClientAsync:
    async def test_async_search(self) -> None:
        transport = httpx.MockTransport(_mock_handler(SELECT_OK))
        async with SolrClient(CONFIG, _async_transport=transport) as client:
            resp = await client.asearch(Query())
        assert resp.data.num_found == 1

    async def test_async_write(self) -> None:
        seen: list[httpx.Request] = []
        transport = httpx.MockTransport(_recording_handler(seen))
        async with SolrClient(CONFIG, _async_transport=transport) as client:
            await client.adelete_by_query("genre:romance", WriteOptions(commit=True))
            await client.acommit()
        assert [json.loads(r.content) for r in seen] == [
            {"delete": {"query": "genre:romance"}},
            {"commit": {}},
        ]

    async def test_async_get_and_ping(self) -> None:
        transport = httpx.MockTransport(_mock_handler({"doc": {"id": "book-1"}, "status": "OK"}))
        async with SolrClient(CONFIG, _async_transport=transport) as client:
            assert (await client.aget("book-1")).doc == {"id": "book-1"}
            assert (await client.aping()).status == "OK"

    async def test_async_error_envelope(self) -> None:
        transport = httpx.MockTransport(_mock_handler(SOLR_ERROR, status=400))
        async with SolrClient(CONFIG, _async_transport=transport) as client:
            with pytest.raises(ResponseError, match="undefined field"):
                await client.asearch(Query())

    async def test_async_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused")

        async with SolrClient(CONFIG, _async_transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(SolrConnectionError):
                await client.asearch(Query())

    async def test_aclose_then_use(self) -> None:
        client = SolrClient(CONFIG, _async_transport=httpx.MockTransport(_mock_handler(SELECT_OK)))
        await client.aclose()
        with pytest.raises(RuntimeError, match="closed"):
            await client.asearch(Query())


class TestSolrClientConfig:
    def test_from_env_when_no_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SOLR_CORE", "films")
        monkeypatch.setenv("SOLR_HOST", "http://env-solr:8983")
        with SolrClient(_sync_transport=httpx.MockTransport(_mock_handler(SELECT_OK))) as client:
            assert client.base_path == "http://env-solr:8983/solr/films"
            assert client.config.core == "films"
