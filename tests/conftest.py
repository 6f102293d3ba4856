"""
Pytest configuration and shared fixtures.

Clears ``SOLR_*`` environment variables so that ``SolrConfig.from_env()``
tests see only what they set themselves, and starts every test with no
request id bound.
"""

import pytest

from solrwire.logging import _request_id_var

_ENV_VARS = (
    "SOLR_HOST",
    "SOLR_CORE",
    "SOLR_USERNAME",
    "SOLR_PASSWORD",
    "SOLR_TIMEOUT_CONNECT",
    "SOLR_TIMEOUT_READ",
    "SOLR_TIMEOUT_POOL",
    "SOLR_RETRIES",
    "SOLR_VERIFY_SSL",
)


@pytest.fixture(autouse=True)
def _clean_solr_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def _unbound_request_id():
    token = _request_id_var.set("")
    yield
    _request_id_var.reset(token)
