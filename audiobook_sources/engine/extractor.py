# audiobook_sources/engine/extractor.py
"""Document extractor for HTML (BeautifulSoup) and JSON content.

This module evaluates parsed rules against fetched pages and holds the
document query helpers (select, attribute, text, markup) plus the audio
heuristics used when a source has no audio rule.
It keeps core.py focused on networking and flow control.
"""

import json
import logging
import re
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from bs4 import BeautifulSoup, Tag
from jsonpath_ng import parse as jsonpath_parse
from jsonpath_ng.jsonpath import JSONPath

from audiobook_sources.constants import AUDIO_ELEMENT_SELECTOR, AUDIO_EXTENSIONS, URL_ATTRIBUTES
from audiobook_sources.engine.rules import Rule, RuleKind, parse_rule
from audiobook_sources.errors import UnsupportedRule
from audiobook_sources.utils import resolve_url

logger = logging.getLogger(__name__)

# --- Regex Patterns ---
# JSON paths: Legado indexes arrays as "list.0" where jsonpath-ng expects "list[0]".
RE_BRACKET_PART = re.compile(r"(\[[^\]]*\])")
RE_DOTTED_SEGMENT = re.compile(r"\.([^.\[\]]+)")
RE_UNQUOTABLE = re.compile(r"['\"`\\()]")
RE_PATH_SEGMENT = re.compile(r"\.([^.\[\]]+)|\[(-?\d+)\]|\[['\"]([^'\"]*)['\"]\]")
RE_PLAIN_PATH = re.compile(r"\$?(?:\.[^.\[\]]+|\[-?\d+\]|\[['\"][^'\"]*['\"]\])*")

# Script scanning, tried in this order. Only the first pattern is trusted without an audio check.
RE_AUDIO_FILE_URL = re.compile(r"(https?://[^\"'\s]+\.(?:mp3|m4a|aac|wav|ogg)[^\"'\s]*)", re.IGNORECASE)
RE_SRC_ASSIGNMENT = re.compile(r"src\s*[:=]\s*[\"']?(https?://[^\"'\s]+)", re.IGNORECASE)
RE_URL_ASSIGNMENT = re.compile(r"url\s*[:=]\s*[\"']?(https?://[^\"'\s]+)", re.IGNORECASE)
SCRIPT_PATTERNS: tuple[tuple[re.Pattern[str], bool], ...] = (
    (RE_AUDIO_FILE_URL, False),
    (RE_SRC_ASSIGNMENT, True),
    (RE_URL_ASSIGNMENT, True),
)

# Unsupported rules are reported once per distinct rule string.
_warned_rules: set[str] = set()
_warned_lock = threading.Lock()


@dataclass
class ListItem:
    """One element matched by a list rule, with the URL of the page it came from."""

    element: Tag
    base_url: str = ""


def warn_unsupported(rule: str) -> None:
    """Log a warning for an unsupported rule the first time it is seen."""
    with _warned_lock:
        if rule in _warned_rules:
            return
        _warned_rules.add(rule)
    logger.warning(f"Skipping unsupported rule (JavaScript/operate rules are not evaluated): {rule[:80]}")


def reset_warnings() -> None:
    """Forget which unsupported rules have already been reported."""
    with _warned_lock:
        _warned_rules.clear()


# --- Document Query ---


def parse_html(text: str | None) -> BeautifulSoup:
    """Parse an HTML document with lxml."""
    return BeautifulSoup(text or "", "lxml")


def select(node: Tag, selector: str) -> list[Tag]:
    """Return all elements matching a CSS selector, or [] for an invalid selector."""
    try:
        return list(node.select(selector))
    except Exception as e:
        logger.warning(f"Invalid CSS selector '{selector}': {e}")
        return []


def select_one(node: Tag, selector: str) -> Tag | None:
    """Return the first element matching a CSS selector."""
    matches = select(node, selector)
    return matches[0] if matches else None


def get_attribute(element: Tag, name: str) -> str | None:
    """Read an attribute as a string (multi-valued attributes are space-joined)."""
    value = element.get(name)
    if value is None:
        return None
    if isinstance(value, list):
        return " ".join(value)
    return str(value)


def text_content(element: Tag) -> str:
    """Return the trimmed text content of an element."""
    return element.get_text().strip()


def inner_html(element: Tag) -> str:
    """Return the inner markup of an element."""
    return element.decode_contents()


def element_value(element: Tag, attribute: str | None, base_url: str = "") -> str | None:
    """Apply an extraction suffix to a single element."""
    if attribute is None or attribute == "text":
        return text_content(element)
    if attribute == "html":
        return inner_html(element)
    if attribute == "all":
        return str(element)

    value = get_attribute(element, attribute)
    if value and attribute in URL_ATTRIBUTES and base_url:
        return resolve_url(base_url, value)
    return value


# --- Rule Evaluation ---


def _single_or_list(values: list[Any]) -> Any:
    if not values:
        return None
    if len(values) == 1:
        return values[0]
    return values


def _as_node(content: Any) -> Tag | None:
    if isinstance(content, ListItem):
        return content.element
    if isinstance(content, Tag):
        return content
    if isinstance(content, str):
        return parse_html(content)
    return None


def _as_text(content: Any) -> str:
    if isinstance(content, ListItem):
        return str(content.element)
    if isinstance(content, (dict, list)):
        return json.dumps(content, ensure_ascii=False)
    return str(content)


@lru_cache(maxsize=512)
def _compile_json_path(path: str) -> JSONPath | None:
    try:
        return jsonpath_parse(_quote_json_path(path))
    except Exception as e:
        logger.warning(f"Invalid JSON path '{path}': {e}")
        return None


def _quote_json_path(path: str) -> str:
    """Quote plain dotted keys so reserved words ("where") and odd keys parse.

    Numeric segments become list indexes; bracket parts are left untouched.
    """

    def quote(match: re.Match[str]) -> str:
        key = match.group(1)
        if key.isdigit():
            return f"[{key}]"
        if key == "*" or RE_UNQUOTABLE.search(key):
            return match.group(0)
        return f".'{key}'"

    chunks = RE_BRACKET_PART.split(path)
    return "".join(chunk if chunk.startswith("[") else RE_DOTTED_SEGMENT.sub(quote, chunk) for chunk in chunks)


def _walk_json_path(data: Any, path: str) -> list[Any]:
    """Follow a plain dotted/bracket path key by key.

    A segment reads an object key or, on a list, a numeric index. Paths with
    wildcards or recursive descent are not walked.
    """
    if "*" in path or not RE_PLAIN_PATH.fullmatch(path):
        return []
    current = data
    for match in RE_PATH_SEGMENT.finditer(path.removeprefix("$")):
        key = next(group for group in match.groups() if group is not None)
        if isinstance(current, Mapping) and key in current:
            current = current[key]
        elif isinstance(current, list) and key.lstrip("-").isdigit() and -len(current) <= int(key) < len(current):
            current = current[int(key)]
        else:
            return []
    return [current]


def json_path_values(data: Any, path: str) -> list[Any]:
    """Return every value matched by a JSON path (missing keys yield [])."""
    expression = _compile_json_path(path)
    values: list[Any] = []
    if expression is not None:
        try:
            values = [match.value for match in expression.find(data)]
        except Exception as e:
            logger.debug(f"JSON path '{path}' could not be evaluated: {e}")
    # "$.data.1" may name an object key rather than a list index
    return values or _walk_json_path(data, path)


def _extract_css(content: Any, rule: Rule, base_url: str) -> Any:
    node = _as_node(content)
    if node is None:
        return None
    if isinstance(content, ListItem) and not base_url:
        base_url = content.base_url

    elements = select(node, rule.selector) if rule.selector else [node]
    values = []
    for element in elements:
        value = element_value(element, rule.attribute, base_url)
        if value is not None:
            values.append(value)
    return _single_or_list(values)


def _extract_jsonpath(content: Any, rule: Rule) -> Any:
    data = content
    if isinstance(content, str):
        try:
            data = json.loads(content.lstrip("\ufeff"))
        except ValueError:
            return None
    elif isinstance(content, (Tag, ListItem)):
        return None
    return _single_or_list(json_path_values(data, rule.selector))


def _extract_regex(content: Any, rule: Rule) -> Any:
    try:
        pattern = re.compile(rule.selector, rule.flags)
    except re.error as e:
        logger.warning(f"Invalid regex rule '{rule.raw}': {e}")
        return None

    values = [match.group(1) if pattern.groups else match.group(0) for match in pattern.finditer(_as_text(content))]
    return _single_or_list(values)


def _evaluate(content: Any, rule: Rule, base_url: str) -> Any:
    if rule.kind in (RuleKind.CSS, RuleKind.ATTRIBUTE):
        return _extract_css(content, rule, base_url)
    if rule.kind is RuleKind.JSONPATH:
        return _extract_jsonpath(content, rule)
    if rule.kind is RuleKind.REGEX:
        return _extract_regex(content, rule)
    if rule.kind is RuleKind.NONE and not rule.raw:
        return None
    raise UnsupportedRule(rule.raw)


def extract(content: Any, rule: str | Rule | None, base_url: str = "") -> Any:
    """Evaluate a rule against a document, element, JSON value or raw text.

    Args:
        content: A parsed document, a Tag, a ListItem, decoded JSON or raw text.
        rule: The rule string (or an already parsed Rule).
        base_url: URL used to resolve href/src attribute values.

    Returns:
        The single matched value, a list when several matched, or None.
    """
    parsed = rule if isinstance(rule, Rule) else parse_rule(rule)
    if content is None:
        return None
    try:
        return _evaluate(content, parsed, base_url)
    except UnsupportedRule as e:
        warn_unsupported(e.rule)
        return None


def extract_list(content: Any, list_rule: str | Rule | None, base_url: str = "") -> list[ListItem]:
    """Select the elements of a result list.

    Only CSS rules select lists from HTML; other kinds yield no items.
    """
    rule = list_rule if isinstance(list_rule, Rule) else parse_rule(list_rule)
    node = _as_node(content)
    if node is None:
        return []

    if rule.kind is RuleKind.CSS:
        return [ListItem(element, base_url) for element in select(node, rule.selector)]

    if rule.kind is RuleKind.UNSUPPORTED or (rule.kind is RuleKind.NONE and rule.raw):
        warn_unsupported(rule.raw)
    else:
        logger.debug(f"List rule '{rule.raw}' is not a CSS selector. No items selected.")
    return []


def extract_field(item: Any, rule_string: str | None) -> Any:
    """Extract one field from a list item (HTML element or JSON object).

    HTML items use the first match of the rule. JSON objects use the rule as a
    JSON path, or as a plain key when it is not one.
    """
    if not rule_string:
        return None
    rule = parse_rule(rule_string)

    if isinstance(item, ListItem):
        if rule.kind in (RuleKind.CSS, RuleKind.ATTRIBUTE):
            element = select_one(item.element, rule.selector) if rule.selector else item.element
            if element is None:
                return None
            return element_value(element, rule.attribute, item.base_url)
        return extract(item, rule, item.base_url)

    if isinstance(item, Mapping):
        if rule.kind in (RuleKind.JSONPATH, RuleKind.REGEX, RuleKind.UNSUPPORTED):
            return extract(dict(item), rule)
        key = re.sub(r"[.@#]", "", rule_string.strip())
        return item.get(key)

    return None


# --- Audio Heuristics ---


def looks_like_audio_url(url: str) -> bool:
    """Return True if a URL plausibly points at an audio resource."""
    lowered = url.lower()
    return "audio" in lowered or any(ext in lowered for ext in AUDIO_EXTENSIONS)


def find_audio_element_url(document: Tag, base_url: str) -> str | None:
    """Return the resolved src of the first audio/source element that has one."""
    for element in select(document, AUDIO_ELEMENT_SELECTOR):
        src = get_attribute(element, "src")
        if src and src.strip():
            return resolve_url(base_url, src.strip())
    return None


def find_script_audio_url(document: Tag) -> str | None:
    """Scan inline scripts for an audio URL.

    Patterns are tried in order per script. URLs found through generic
    ``src=``/``url=`` assignments must look like audio to be accepted.
    """
    for script in document.find_all("script"):
        content = script.string or script.get_text()
        if not content:
            continue
        # JSON-escaped slashes ("http:\/\/cdn\/a.mp3")
        content = content.replace("\\/", "/")
        for pattern, needs_check in SCRIPT_PATTERNS:
            for match in pattern.finditer(content):
                candidate = match.group(1).strip("\"'").rstrip(";,)")
                if needs_check and not looks_like_audio_url(candidate):
                    continue
                return candidate
    return None


def find_audio_url(document: Tag, base_url: str) -> str | None:
    """Heuristically locate the audio URL of a chapter page."""
    url = find_audio_element_url(document, base_url)
    if url:
        return url
    return find_script_audio_url(document)
