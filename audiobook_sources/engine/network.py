"""Network module handling HTTP sessions, caching and the page fetcher."""

import json
import logging
import random
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, cast

import requests
from cachetools import TTLCache
from flask import Flask
from requests.adapters import HTTPAdapter
from requests.sessions import Session
from urllib3.util.retry import Retry

from audiobook_sources.constants import DEFAULT_TIMEOUT_SECONDS, USER_AGENTS
from audiobook_sources.errors import FetchAborted, FetchFailed, UnexpectedContentType

logger = logging.getLogger(__name__)

# --- Concurrency Control ---
DEFAULT_CONCURRENT_REQUESTS = 3
CACHE_LOCK = threading.Lock()

JSON_CONTENT_TYPE = "application/json; charset=utf-8"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded; charset=utf-8"


def get_random_user_agent() -> str:
    """Return a random User-Agent string from the constants list."""
    return random.choice(USER_AGENTS)  # nosec B311 # noqa: S311


def get_session(retries: int = 2) -> Session:
    """Configure and return a requests Session with retry logic.

    Only idempotent methods are retried; POST searches are sent once.
    """
    session = requests.Session()
    retry_strategy = Retry(
        total=retries,
        backoff_factor=1,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["HEAD", "GET", "OPTIONS"],
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def get_headers(user_agent: str | None = None, referer: str | None = None) -> dict[str, str]:
    """Generate standard HTTP headers for source requests."""
    if not user_agent:
        user_agent = get_random_user_agent()
    headers = {
        "User-Agent": user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,application/json;q=0.9,*/*;q=0.8",
        "Accept-Language": "zh-CN,zh;q=0.9,en-US;q=0.8,en;q=0.7",
        "Accept-Encoding": "gzip, deflate",
        "Connection": "keep-alive",
    }
    if referer:
        headers["Referer"] = referer
    return headers


def cache_key(method: str, url: str, body: str | None = None, charset: str | None = None) -> str:
    """Build the fetch cache key. Requests differing in method, body or charset never share an entry."""
    return f"{method.upper()} {url}|{charset or ''}|{body or ''}"


def check_signal(signal: threading.Event | None, url: str) -> None:
    """Raise FetchAborted if the cancellation signal has been set."""
    if signal is not None and signal.is_set():
        raise FetchAborted(f"Request to {url} was aborted", url=url)


def parse_json_text(text: str, url: str) -> Any:
    """Decode a JSON response body, tolerating a UTF-8 BOM.

    Raises:
        UnexpectedContentType: If the body is not valid JSON.
    """
    cleaned = text.lstrip("\ufeff").strip()
    try:
        return json.loads(cleaned)
    except ValueError as e:
        logger.warning(f"Expected JSON from {url} but got: {cleaned[:100]!r}")
        raise UnexpectedContentType(f"Response from {url} is not valid JSON", url=url) from e


def decode_response(response: requests.Response, charset: str | None = None) -> str:
    """Decode a response body, honouring an explicit charset first."""
    if charset:
        try:
            return response.content.decode(charset, errors="replace")
        except LookupError:
            logger.warning(f"Unknown charset '{charset}' for {response.url}. Detecting encoding instead.")

    # requests falls back to ISO-8859-1 for text/* without a charset, which garbles GBK/UTF-8 pages.
    if not response.encoding or response.encoding.lower() == "iso-8859-1":
        response.encoding = response.apparent_encoding
    return response.text


def _guess_content_type(body: str) -> str:
    stripped = body.lstrip()
    if stripped.startswith(("{", "[")):
        return JSON_CONTENT_TYPE
    return FORM_CONTENT_TYPE


class PageFetcher(ABC):
    """Interface the engine uses to retrieve remote pages.

    Implementations raise FetchFailed for transport errors and non-2xx
    statuses, and UnexpectedContentType when JSON was expected but the body
    does not parse.
    """

    @abstractmethod
    def fetch_text(
        self,
        url: str,
        *,
        method: str = "GET",
        body: str | None = None,
        headers: Mapping[str, str] | None = None,
        charset: str | None = None,
        signal: threading.Event | None = None,
    ) -> str:
        """Fetch a URL and return the decoded body."""

    @abstractmethod
    def fetch_json(
        self,
        url: str,
        *,
        method: str = "GET",
        body: str | None = None,
        headers: Mapping[str, str] | None = None,
        charset: str | None = None,
        signal: threading.Event | None = None,
    ) -> Any:
        """Fetch a URL and return the decoded JSON value."""


class RequestsPageFetcher(PageFetcher):
    """PageFetcher backed by requests, with a shared TTL cache and a global semaphore."""

    def __init__(
        self,
        timeout: int = DEFAULT_TIMEOUT_SECONDS,
        retries: int = 2,
        max_concurrent: int = DEFAULT_CONCURRENT_REQUESTS,
        cache_ttl: int = 300,
        cache_size: int = 100,
        jitter_max: float = 0.0,
    ) -> None:
        """Initialize the fetcher. Flask apps reconfigure it through init_app."""
        self._local = threading.local()
        self.configure(timeout, retries, max_concurrent, cache_ttl, cache_size, jitter_max)

    def configure(
        self,
        timeout: int,
        retries: int,
        max_concurrent: int,
        cache_ttl: int,
        cache_size: int,
        jitter_max: float,
    ) -> None:
        """Apply settings and reset the cache and the per-thread sessions."""
        self.timeout = timeout
        self.retries = retries
        self.jitter_max = jitter_max
        self.cache_enabled = cache_ttl > 0 and cache_size > 0
        logger.info(f"Initializing Global Request Semaphore with limit: {max_concurrent}")
        self._semaphore = threading.BoundedSemaphore(max_concurrent)
        self.cache: TTLCache[str, str] = TTLCache(maxsize=max(cache_size, 1), ttl=max(cache_ttl, 1))
        self._local = threading.local()

    def init_app(self, app: Flask) -> None:
        """Configure the fetcher from the Flask app config."""
        self.configure(
            timeout=app.config.get("SCRAPER_TIMEOUT", DEFAULT_TIMEOUT_SECONDS),
            retries=app.config.get("SCRAPER_RETRIES", 2),
            max_concurrent=app.config.get("SCRAPER_THREADS", DEFAULT_CONCURRENT_REQUESTS),
            cache_ttl=app.config.get("FETCH_CACHE_TTL", 300),
            cache_size=app.config.get("FETCH_CACHE_SIZE", 100),
            jitter_max=app.config.get("SCRAPER_JITTER_MAX", 0.0),
        )

    def clear_cache(self) -> None:
        """Drop every cached response."""
        with CACHE_LOCK:
            self.cache.clear()

    def _get_thread_session(self) -> Session:
        """Retrieve or create a thread-local Session."""
        if not hasattr(self._local, "session"):
            self._local.session = get_session(self.retries)
        return cast(Session, self._local.session)

    def fetch_text(
        self,
        url: str,
        *,
        method: str = "GET",
        body: str | None = None,
        headers: Mapping[str, str] | None = None,
        charset: str | None = None,
        signal: threading.Event | None = None,
    ) -> str:
        """Fetch a URL and return the decoded body, serving repeats from the cache.

        Raises:
            FetchFailed: On transport errors or non-2xx responses.
            FetchAborted: If ``signal`` is set before or after the request.
        """
        method = (method or "GET").upper()
        key = cache_key(method, url, body, charset)
        if self.cache_enabled:
            with CACHE_LOCK:
                if key in self.cache:
                    logger.debug(f"Fetch cache hit: {method} {url}")
                    return self.cache[key]

        text = self._request(url, method, body, headers, charset, signal)

        if self.cache_enabled:
            with CACHE_LOCK:
                self.cache[key] = text
        return text

    def fetch_json(
        self,
        url: str,
        *,
        method: str = "GET",
        body: str | None = None,
        headers: Mapping[str, str] | None = None,
        charset: str | None = None,
        signal: threading.Event | None = None,
    ) -> Any:
        """Fetch a URL and decode it as JSON.

        Raises:
            UnexpectedContentType: If the body is not valid JSON.
        """
        text = self.fetch_text(url, method=method, body=body, headers=headers, charset=charset, signal=signal)
        return parse_json_text(text, url)

    def _request(
        self,
        url: str,
        method: str,
        body: str | None,
        headers: Mapping[str, str] | None,
        charset: str | None,
        signal: threading.Event | None,
    ) -> str:
        check_signal(signal, url)
        if self.jitter_max > 0:
            time.sleep(random.uniform(0, self.jitter_max))  # nosec B311 # noqa: S311

        request_headers = get_headers()
        if headers:
            request_headers.update(headers)

        data = None
        if body is not None and method != "GET":
            data = body.encode(charset or "utf-8", errors="replace")
            if not any(name.lower() == "content-type" for name in request_headers):
                request_headers["Content-Type"] = _guess_content_type(body)

        session = self._get_thread_session()
        try:
            with self._semaphore:
                response = session.request(method, url, headers=request_headers, data=data, timeout=self.timeout)
            response.raise_for_status()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else "unknown"
            logger.warning(f"HTTP {status} while fetching {method} {url}")
            raise FetchFailed(f"HTTP {status} from {url}", url=url) from e
        except requests.RequestException as e:
            logger.warning(f"Request failed for {method} {url}: {e}")
            raise FetchFailed(f"Failed to fetch {url}: {e}", url=url) from e

        check_signal(signal, url)
        return decode_response(response, charset)
