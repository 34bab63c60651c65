# File: audiobook_sources/engine/templates.py
"""URL template resolver.

Search URLs in book sources are templates such as
``/search?q={{key}}&p={{page}}`` optionally followed by an options blob:
``/api/search,{"method": "POST", "body": {"kw": "{{key}}"}}``.
"""

import ast
import json
import logging
import re
from collections.abc import Mapping
from typing import Any, TypedDict

from urllib.parse import quote

from audiobook_sources.utils import safe_parse_json

logger = logging.getLogger(__name__)


class UrlOptions(TypedDict, total=False):
    """Request options parsed from the blob trailing a URL template."""

    method: str
    body: str
    headers: dict[str, str]
    charset: str


# --- Regex Patterns ---
RE_DOUBLE_BRACE = re.compile(r"\{\{(\w+)\}\}")
RE_SINGLE_BRACE = re.compile(r"\{(\w+)\}")
RE_AT_PLACEHOLDER = re.compile(r"@(\w+)")
RE_QUERY_SEPARATOR = re.compile(r"@[A-Za-z_]\w*=")
RE_CONFIG_START = re.compile(r",\s*[{'\"]")

# Quote repair for hand-written option blobs
RE_SINGLE_QUOTED_VALUE = re.compile(r":\s*'([^']*?)'")
RE_SINGLE_QUOTED_KEY = re.compile(r"'([^']+?)':")
RE_NEWLINE_INDENT = re.compile(r"\n\s*")

# Characters encodeURIComponent leaves alone besides letters, digits and "-_.~"
URI_COMPONENT_SAFE = "!*'()"


def encode_component(value: Any, charset: str | None = None) -> str:
    """URL-component-encode a template value (None encodes to "")."""
    if value is None:
        return ""
    text = str(value)
    try:
        return quote(text, safe=URI_COMPONENT_SAFE, encoding=charset or "utf-8", errors="replace")
    except LookupError:
        logger.warning(f"Unknown charset '{charset}' in URL template. Falling back to UTF-8.")
        return quote(text, safe=URI_COMPONENT_SAFE)


def _rewrite_query_separator(url: str) -> str:
    # Legado writes "search.php@key=value" where a "?" is meant.
    if "@" not in url or "?" in url:
        return url
    index = url.index("@")
    if RE_QUERY_SEPARATOR.match(url, index):
        return f"{url[:index]}?{url[index + 1 :]}"
    return url


def resolve_template(template: str | None, params: Mapping[str, Any], charset: str | None = None) -> str:
    """Substitute placeholders in a URL template.

    ``{{key}}`` is replaced first, then ``{key}``, then ``@key`` (only for keys
    present in ``params``). Values are URL-component encoded. Missing keys in
    the brace forms become empty strings.

    Args:
        template: The URL part of a search template.
        params: Substitution values (typically key, page and pageSize).
        charset: Optional charset used to percent-encode values (e.g. "gbk").

    Returns:
        str: The resolved URL (possibly still relative).
    """
    if not template:
        return ""

    def substitute(match: re.Match[str]) -> str:
        return encode_component(params.get(match.group(1)), charset)

    def substitute_known(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in params:
            return match.group(0)
        return encode_component(params[key], charset)

    url = RE_DOUBLE_BRACE.sub(substitute, template)
    url = RE_SINGLE_BRACE.sub(substitute, url)
    url = RE_AT_PLACEHOLDER.sub(substitute_known, url)
    return _rewrite_query_separator(url)


def coerce_to_json(text: str) -> str:
    """Repair single-quoted pseudo-JSON into parseable JSON text.

    Text that already parses is returned unchanged.
    """
    try:
        json.loads(text)
        return text
    except ValueError:
        pass
    repaired = RE_SINGLE_QUOTED_VALUE.sub(r': "\1"', text)
    repaired = RE_SINGLE_QUOTED_KEY.sub(r'"\1":', repaired)
    return RE_NEWLINE_INDENT.sub(" ", repaired)


def parse_options_blob(blob: str) -> dict[str, Any] | None:
    """Parse an options blob, trying JSON, Python literals, then quote repair.

    Returns:
        dict | None: The parsed options, or None if nothing produced a dict.
    """
    parsed: Any = None
    try:
        parsed = json.loads(blob)
    except ValueError:
        pass

    if parsed is None:
        try:
            parsed = ast.literal_eval(blob)
        except (ValueError, SyntaxError, TypeError, MemoryError, RecursionError):
            parsed = None

    if parsed is None:
        try:
            parsed = json.loads(coerce_to_json(blob))
        except ValueError:
            return None

    return parsed if isinstance(parsed, dict) else None


def _normalize_options(options: Mapping[str, Any]) -> UrlOptions:
    result: UrlOptions = {}

    method = options.get("method")
    if isinstance(method, str) and method.strip():
        result["method"] = method.strip().upper()

    body = options.get("body")
    if isinstance(body, (dict, list)):
        result["body"] = json.dumps(body, ensure_ascii=False)
    elif body is not None and body != "":
        result["body"] = str(body)

    headers = options.get("headers")
    if isinstance(headers, str):
        headers = safe_parse_json(headers)
    if isinstance(headers, Mapping) and headers:
        result["headers"] = {str(key): str(value) for key, value in headers.items()}

    charset = options.get("charset")
    if isinstance(charset, str) and charset.strip():
        result["charset"] = charset.strip().lower()

    return result


def split_url_config(template: str | None) -> tuple[str, UrlOptions]:
    """Split a search template into its URL and its request options.

    The first comma followed (after optional whitespace) by ``{``, ``'`` or
    ``"`` starts the options blob. Never raises: an unparseable blob makes the
    whole template the URL with empty options.

    Args:
        template: The raw ``search_url_template`` of a source.

    Returns:
        tuple[str, UrlOptions]: The URL part and the normalized options.
    """
    if not template:
        return "", {}

    match = RE_CONFIG_START.search(template)
    if not match:
        return template, {}

    url = template[: match.start()].strip()
    blob = template[match.start() + 1 :].strip()
    options = parse_options_blob(blob)
    if options is None:
        logger.warning(f"Could not parse URL options, using the whole template as URL: {blob[:100]}")
        return template, {}

    return url, _normalize_options(options)


def resolve_body(body: str | None, params: Mapping[str, Any]) -> str | None:
    """Substitute ``{{key}}`` placeholders in a request body with raw values.

    Unknown placeholders are left untouched.
    """
    if not body:
        return None

    def substitute(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in params:
            return match.group(0)
        value = params[key]
        return "" if value is None else str(value)

    return RE_DOUBLE_BRACE.sub(substitute, body)
