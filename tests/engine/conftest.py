# File: tests/engine/conftest.py
"""Fixtures specifically for the engine test package.

Includes a mocked page fetcher, a time.sleep patch and sample pages.
"""

from collections.abc import Generator
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from audiobook_sources.engine.network import PageFetcher
from audiobook_sources.engine.normalizer import Source, normalize_source


@pytest.fixture(autouse=True)
def mock_sleep() -> Generator[Any]:
    """Globally mock time.sleep for all tests in this package to speed up execution."""
    with patch("time.sleep") as mock_sleep:
        yield mock_sleep


@pytest.fixture
def fetcher() -> MagicMock:
    """A PageFetcher double that records every call."""
    return MagicMock(spec=PageFetcher)


@pytest.fixture
def html_source() -> Source:
    """A source that searches an HTML results page."""
    source = normalize_source(
        {
            "id": "html-src",
            "name": "HTML Source",
            "baseUrl": "http://s",
            "searchUrlTemplate": "/s?kw={{key}},{'method':'GET'}",
            "searchListRule": "li.r",
            "searchFieldRules": {"name": "a@text", "bookUrl": "a@attr:href"},
            "chapterList": "ul.chapters li",
            "chapterName": "a@text",
            "chapterUrl": "a@href",
        }
    )
    assert source is not None
    return source


@pytest.fixture
def search_page_html() -> str:
    """A search results page with two books and one untitled entry."""
    return """
<html><body>
<ul>
  <li class="r"><a href="/book/1">Hello</a><img class="c" src="/covers/1.jpg"><span class="au">Ann</span></li>
  <li class="r"><a href="//cdn.s/book/2">World</a></li>
  <li class="r"><a href="/book/3"></a></li>
</ul>
</body></html>
"""


@pytest.fixture
def chapter_page_html() -> str:
    """A book page with a chapter list."""
    return """
<html><body>
<ul class="chapters">
  <li><a href="/play/1">Chapter 1</a></li>
  <li><a href="play/2">Chapter 2</a></li>
  <li><a>No link</a></li>
  <li><a href="/play/4"></a></li>
</ul>
</body></html>
"""


@pytest.fixture
def legado_raw() -> dict[str, Any]:
    """A Legado-format audiobook source object."""
    return {
        "bookSourceName": "Legado Audio",
        "bookSourceUrl": "https://legado.example",
        "bookSourceType": 1,
        "searchUrl": "/search?q={{key}}&page={{page}}",
        "ruleSearch": '{"bookList": "class.book-item", "name": "tag.h3@text", "bookUrl": "tag.a@href"}',
        "ruleToc": {"chapterList": "id.list@tag.li", "chapterName": "a@text", "chapterUrl": "a@href"},
        "ruleContent": {"content": "audio@src"},
    }
