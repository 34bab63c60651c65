"""Utility functions for the application."""

import hashlib
import json
from collections.abc import Mapping
from typing import Any
from urllib.parse import urljoin


def resolve_url(base_url: str | None, relative_url: str | None) -> str:
    """Resolve a possibly relative URL against a base URL.

    Absolute http(s) URLs are returned untouched. Protocol-relative URLs
    ("//host/path") get "https:" prepended. Everything else is joined to
    the base with standard URL resolution. Never raises: if resolution
    fails the original string is returned unchanged.

    Args:
        base_url: The URL of the page the value was found on.
        relative_url: The raw value (e.g. an href or src attribute).

    Returns:
        str: The absolute URL, or "" for an empty input.
    """
    if not relative_url:
        return ""

    relative_url = relative_url.strip()
    if relative_url.startswith(("http://", "https://")):
        return relative_url
    if relative_url.startswith("//"):
        return f"https:{relative_url}"
    if not base_url:
        return relative_url

    try:
        return urljoin(base_url, relative_url)
    except ValueError:
        return relative_url


def safe_parse_json(value: Any) -> dict[str, Any]:
    """Parse a JSON object that may arrive as a string, never raising.

    Legado sources ship their rule groups (ruleSearch, ruleToc...) either as
    nested objects or as JSON-encoded strings.

    Returns:
        dict[str, Any]: The parsed mapping, or {} for anything that is not a JSON object.
    """
    if not value:
        return {}
    if isinstance(value, Mapping):
        return dict(value)
    if not isinstance(value, str):
        return {}
    try:
        parsed = json.loads(value)
    except (ValueError, TypeError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


def as_text(value: Any) -> str:
    """Coerce an extracted value into a single stripped string.

    Lists (multiple matches) collapse to their first non-empty entry.
    """
    if value is None:
        return ""
    if isinstance(value, list):
        for item in value:
            text = as_text(item)
            if text:
                return text
        return ""
    if isinstance(value, dict):
        return ""
    return str(value).strip()


def stable_id(*parts: str) -> str:
    """Derive a short, deterministic identifier from the given parts.

    Used for sources that carry neither an explicit id nor a base URL, so
    that re-importing them still updates the same entry.
    """
    hash_md5 = hashlib.md5()  # nosec B324  # noqa: S324
    for part in parts:
        hash_md5.update(part.encode("utf-8"))
        hash_md5.update(b"\0")
    return hash_md5.hexdigest()[:12]
