# File: tests/unit/test_utils.py
"""Unit tests for URL resolution and value coercion helpers."""

import pytest

from audiobook_sources.utils import as_text, resolve_url, safe_parse_json, stable_id


@pytest.mark.parametrize(
    "base, value, expected",
    [
        ("http://site.com", "/b", "http://site.com/b"),
        ("http://site.com/dir/page", "next", "http://site.com/dir/next"),
        ("http://site.com/dir/", "../up", "http://site.com/up"),
        ("http://site.com", "https://other.com/x", "https://other.com/x"),
        ("http://site.com", "//cdn.com/a.mp3", "https://cdn.com/a.mp3"),
        ("", "/relative", "/relative"),
        (None, "rel", "rel"),
        ("http://site.com", "", ""),
        ("http://site.com", None, ""),
        ("http://site.com", "  /trim  ", "http://site.com/trim"),
    ],
)
def test_resolve_url(base: str | None, value: str | None, expected: str) -> None:
    """Relative values are joined, absolute ones kept, protocol-relative ones get https."""
    assert resolve_url(base, value) == expected


def test_resolve_url_never_raises() -> None:
    """Malformed bases return the value unchanged."""
    assert resolve_url("http://[broken", "/x") == "/x"


def test_safe_parse_json() -> None:
    """Objects and JSON object strings parse; everything else is empty."""
    assert safe_parse_json({"a": 1}) == {"a": 1}
    assert safe_parse_json('{"a": 1}') == {"a": 1}
    assert safe_parse_json("[1]") == {}
    assert safe_parse_json("{oops") == {}
    assert safe_parse_json(None) == {}
    assert safe_parse_json(5) == {}


def test_as_text() -> None:
    """Extracted values collapse to one stripped string."""
    assert as_text("  a ") == "a"
    assert as_text(3) == "3"
    assert as_text(None) == ""
    assert as_text(["", " b ", "c"]) == "b"
    assert as_text([]) == ""
    assert as_text({"a": 1}) == ""


def test_stable_id() -> None:
    """Ids are deterministic and sensitive to part boundaries."""
    assert stable_id("name") == stable_id("name")
    assert len(stable_id("name")) == 12
    assert stable_id("ab", "c") != stable_id("a", "bc")
