# File: tests/engine/test_network.py
"""Tests for the requests-backed page fetcher."""

import threading
from collections.abc import Generator
from typing import Any
from unittest.mock import patch

import pytest
import requests
import requests_mock
from flask import Flask

from audiobook_sources.engine.network import (
    FORM_CONTENT_TYPE,
    JSON_CONTENT_TYPE,
    RequestsPageFetcher,
    cache_key,
    get_headers,
    get_session,
    parse_json_text,
)
from audiobook_sources.errors import FetchAborted, FetchFailed, UnexpectedContentType


@pytest.fixture
def adapter() -> requests_mock.Adapter:
    """A requests_mock adapter mounted on a fresh session."""
    return requests_mock.Adapter()


@pytest.fixture
def page_fetcher(adapter: requests_mock.Adapter) -> Generator[RequestsPageFetcher]:
    """A fetcher whose thread session is served by the mock adapter."""
    mock_session = requests.Session()
    mock_session.mount("http://", adapter)
    mock_session.mount("https://", adapter)
    fetcher = RequestsPageFetcher(timeout=5, retries=0, cache_ttl=60, cache_size=10)
    with patch.object(fetcher, "_get_thread_session", return_value=mock_session):
        yield fetcher


def test_fetch_text_and_cache(page_fetcher: RequestsPageFetcher, adapter: requests_mock.Adapter) -> None:
    """Repeated GETs are served from the cache."""
    adapter.register_uri("GET", "http://site/page", text="<html>ok</html>")

    assert page_fetcher.fetch_text("http://site/page") == "<html>ok</html>"
    assert page_fetcher.fetch_text("http://site/page") == "<html>ok</html>"
    assert adapter.call_count == 1

    page_fetcher.clear_cache()
    page_fetcher.fetch_text("http://site/page")
    assert adapter.call_count == 2


def test_cache_distinguishes_method_and_body(page_fetcher: RequestsPageFetcher, adapter: requests_mock.Adapter) -> None:
    """POSTs with different bodies never share a cache entry."""
    adapter.register_uri("POST", "http://site/api", [{"text": "first"}, {"text": "second"}])

    assert page_fetcher.fetch_text("http://site/api", method="POST", body="q=a") == "first"
    assert page_fetcher.fetch_text("http://site/api", method="post", body="q=b") == "second"
    assert cache_key("post", "http://x", "a") != cache_key("POST", "http://x", "b")
    assert cache_key("GET", "http://x", charset="gbk") != cache_key("GET", "http://x")


def test_disabled_cache_always_fetches(adapter: requests_mock.Adapter) -> None:
    """A zero TTL disables caching."""
    mock_session = requests.Session()
    mock_session.mount("http://", adapter)
    adapter.register_uri("GET", "http://site/page", text="x")
    fetcher = RequestsPageFetcher(retries=0, cache_ttl=0)

    with patch.object(fetcher, "_get_thread_session", return_value=mock_session):
        fetcher.fetch_text("http://site/page")
        fetcher.fetch_text("http://site/page")

    assert adapter.call_count == 2


def test_post_body_content_type(page_fetcher: RequestsPageFetcher, adapter: requests_mock.Adapter) -> None:
    """JSON bodies are sent as JSON, everything else as a form."""
    adapter.register_uri("POST", "http://site/api", text="{}")

    page_fetcher.fetch_text("http://site/api", method="POST", body='{"kw": "a"}')
    assert adapter.last_request.headers["Content-Type"] == JSON_CONTENT_TYPE
    assert adapter.last_request.body == b'{"kw": "a"}'

    page_fetcher.fetch_text("http://site/api", method="POST", body="kw=b")
    assert adapter.last_request.headers["Content-Type"] == FORM_CONTENT_TYPE


def test_custom_headers_override_defaults(page_fetcher: RequestsPageFetcher, adapter: requests_mock.Adapter) -> None:
    """Source headers are merged over the defaults, including Content-Type."""
    adapter.register_uri("POST", "http://site/api", text="ok")

    page_fetcher.fetch_text(
        "http://site/api",
        method="POST",
        body="{}",
        headers={"User-Agent": "Custom/1.0", "content-type": "text/plain"},
    )

    assert adapter.last_request.headers["User-Agent"] == "Custom/1.0"
    assert adapter.last_request.headers["Content-Type"] == "text/plain"


def test_http_error_raises_fetch_failed(page_fetcher: RequestsPageFetcher, adapter: requests_mock.Adapter) -> None:
    """Non-2xx statuses raise FetchFailed with the cause attached."""
    adapter.register_uri("GET", "http://site/missing", status_code=404)

    with pytest.raises(FetchFailed) as exc_info:
        page_fetcher.fetch_text("http://site/missing")

    assert "404" in exc_info.value.message
    assert exc_info.value.url == "http://site/missing"
    assert isinstance(exc_info.value.__cause__, requests.HTTPError)


def test_connection_error_raises_fetch_failed(page_fetcher: RequestsPageFetcher, adapter: requests_mock.Adapter) -> None:
    """Transport errors raise FetchFailed and are not cached."""
    adapter.register_uri("GET", "http://site/down", exc=requests.exceptions.ConnectTimeout)

    with pytest.raises(FetchFailed):
        page_fetcher.fetch_text("http://site/down")
    assert len(page_fetcher.cache) == 0


def test_fetch_json(page_fetcher: RequestsPageFetcher, adapter: requests_mock.Adapter) -> None:
    """JSON bodies are decoded, with or without a BOM."""
    adapter.register_uri("GET", "http://site/a.json", text='{"a": [1, 2]}')
    adapter.register_uri("GET", "http://site/b.json", content='\ufeff{"b": true}'.encode())

    assert page_fetcher.fetch_json("http://site/a.json") == {"a": [1, 2]}
    assert page_fetcher.fetch_json("http://site/b.json", charset="utf-8") == {"b": True}


def test_fetch_json_rejects_html(page_fetcher: RequestsPageFetcher, adapter: requests_mock.Adapter) -> None:
    """HTML where JSON was expected raises UnexpectedContentType."""
    adapter.register_uri("GET", "http://site/api", text="<html>login</html>")

    with pytest.raises(UnexpectedContentType) as exc_info:
        page_fetcher.fetch_json("http://site/api")

    assert exc_info.value.status_code == 502
    assert isinstance(exc_info.value.__cause__, ValueError)


def test_explicit_charset(page_fetcher: RequestsPageFetcher, adapter: requests_mock.Adapter) -> None:
    """An explicit charset decodes the body."""
    adapter.register_uri("GET", "http://site/gbk", content="三体".encode("gbk"))
    assert page_fetcher.fetch_text("http://site/gbk", charset="gbk") == "三体"


def test_unknown_charset_falls_back_to_detection(
    page_fetcher: RequestsPageFetcher, adapter: requests_mock.Adapter
) -> None:
    """A bogus charset falls back to the response encoding."""
    adapter.register_uri(
        "GET",
        "http://site/page",
        content="hello".encode(),
        headers={"Content-Type": "text/html; charset=utf-8"},
    )
    assert page_fetcher.fetch_text("http://site/page", charset="no-such-charset") == "hello"


def test_abort_signal_stops_before_request(page_fetcher: RequestsPageFetcher, adapter: requests_mock.Adapter) -> None:
    """A set signal aborts without touching the network."""
    adapter.register_uri("GET", "http://site/page", text="x")
    signal = threading.Event()
    signal.set()

    with pytest.raises(FetchAborted):
        page_fetcher.fetch_text("http://site/page", signal=signal)

    assert adapter.call_count == 0


def test_abort_is_a_fetch_failure() -> None:
    """Callers handling FetchFailed also handle aborts."""
    assert issubclass(FetchAborted, FetchFailed)


def test_jitter_sleeps(adapter: requests_mock.Adapter, mock_sleep: Any) -> None:
    """A positive jitter delays each request."""
    mock_session = requests.Session()
    mock_session.mount("http://", adapter)
    adapter.register_uri("GET", "http://site/page", text="x")
    fetcher = RequestsPageFetcher(retries=0, jitter_max=0.5)

    with patch.object(fetcher, "_get_thread_session", return_value=mock_session):
        fetcher.fetch_text("http://site/page")

    assert mock_sleep.called


def test_init_app_applies_config() -> None:
    """Flask config drives timeout, retries and cache."""
    app = Flask(__name__)
    app.config.update(SCRAPER_TIMEOUT=7, SCRAPER_RETRIES=1, FETCH_CACHE_TTL=0, SCRAPER_JITTER_MAX=0.25)
    fetcher = RequestsPageFetcher()

    fetcher.init_app(app)

    assert fetcher.timeout == 7
    assert fetcher.retries == 1
    assert fetcher.cache_enabled is False
    assert fetcher.jitter_max == 0.25


def test_thread_session_is_reused() -> None:
    """Each thread keeps one session."""
    fetcher = RequestsPageFetcher(retries=0)
    assert fetcher._get_thread_session() is fetcher._get_thread_session()


def test_get_session_retries_idempotent_methods_only() -> None:
    """POST is never retried by the transport."""
    session = get_session(retries=3)
    retry = session.get_adapter("https://host").max_retries
    assert retry.total == 3
    assert "POST" not in retry.allowed_methods


def test_get_headers() -> None:
    """Default headers carry a User-Agent and an optional Referer."""
    headers = get_headers(user_agent="UA/1", referer="http://ref")
    assert headers["User-Agent"] == "UA/1"
    assert headers["Referer"] == "http://ref"
    assert get_headers()["User-Agent"]


def test_parse_json_text() -> None:
    """Whitespace and a BOM around JSON are tolerated."""
    assert parse_json_text('\ufeff  [1]\n', "http://x") == [1]
    with pytest.raises(UnexpectedContentType):
        parse_json_text("", "http://x")
