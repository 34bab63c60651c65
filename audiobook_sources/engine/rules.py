# audiobook_sources/engine/rules.py
"""Rule parser for book-source extraction rules.

A rule is a single string telling the extractor how to locate one piece of
data in a fetched page. Source authors mix several dialects in the same file:
plain CSS (``div.item@text``), Legado's JSOUP syntax (``class.item@tag.a@href``),
JSON paths (``$.data.list`` or ``@json:data.list``) and regular expressions
(``@regex:...`` or ``/.../i``). This module turns every dialect into one
tagged :class:`Rule` so the extractor only deals with canonical forms.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache

logger = logging.getLogger(__name__)


class RuleKind(str, Enum):
    """Discriminant of a parsed rule."""

    NONE = "none"
    UNSUPPORTED = "unsupported"
    JSONPATH = "jsonpath"
    REGEX = "regex"
    CSS = "css"
    ATTRIBUTE = "attribute"


@dataclass(frozen=True)
class Rule:
    """A parsed extraction rule.

    Attributes:
        kind: Which evaluator handles the rule.
        selector: CSS selector, JSON path or regex pattern (depending on kind).
            Empty for ATTRIBUTE rules, which read from the current element.
        attribute: Extraction suffix for CSS/ATTRIBUTE rules: "text", "html",
            "all" or an attribute name. None means text.
        flags: Python ``re`` flags for REGEX rules.
        raw: The original rule string, kept for logging.
    """

    kind: RuleKind
    selector: str = ""
    attribute: str | None = None
    flags: int = 0
    raw: str = ""


NONE_RULE = Rule(RuleKind.NONE)

# --- Regex Patterns ---
RE_JSON_PREFIX = re.compile(r"^@json:", re.IGNORECASE)
RE_CSS_PREFIX = re.compile(r"^@css:", re.IGNORECASE)
RE_REGEX_LITERAL = re.compile(r"^/(.+)/([gimsuvy]*)$", re.DOTALL)
# JS named groups "(?<name>" -> Python "(?P<name>", leaving lookbehinds alone.
RE_JS_NAMED_GROUP = re.compile(r"\(\?<(?![=!])")

# Legado JSOUP dialect
RE_LEGADO_CLASS = re.compile(r"\bclass\.([\w-]+)")
RE_LEGADO_ID = re.compile(r"\bid\.([\w-]+)")
RE_LEGADO_TAG = re.compile(r"\btag\.(\w+)")
# Trailing index segments (".0", ".-1") select the Nth match in Legado. We take the first match instead.
RE_INDEX_SEGMENT = re.compile(r"\.-?\d+(?=\s|$)")
# A chain segment that is a selector rather than an extraction suffix.
RE_SELECTOR_SEGMENT = re.compile(r"^(?:class|id|tag)\.|[.#\[\]>\s*:]")

REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}
EXTRACTION_KEYWORDS = frozenset({"text", "html", "all", "textNodes", "ownText"})
TEXT_ALIASES = frozenset({"textNodes", "ownText"})


def convert_legado_selector(segment: str) -> str:
    """Rewrite one Legado JSOUP selector segment into standard CSS.

    ``class.name`` -> ``.name``, ``id.name`` -> ``#name``, ``tag.name`` -> ``name``,
    and trailing numeric indexes are dropped.
    """
    css = segment.strip()
    css = RE_LEGADO_CLASS.sub(r".\1", css)
    css = RE_LEGADO_ID.sub(r"#\1", css)
    css = RE_LEGADO_TAG.sub(r"\1", css)
    css = RE_INDEX_SEGMENT.sub("", css)
    return css.strip()


def _is_selector_segment(segment: str) -> bool:
    segment = segment.strip()
    if not segment or segment.startswith("attr:") or segment in EXTRACTION_KEYWORDS:
        return False
    return bool(RE_SELECTOR_SEGMENT.search(segment))


def _normalize_attribute(suffix: str) -> str | None:
    suffix = suffix.strip()
    if suffix.startswith("attr:"):
        suffix = suffix[len("attr:") :].strip()
    if not suffix:
        return None
    if suffix in TEXT_ALIASES:
        return "text"
    return suffix.lower()


def _normalize_json_path(path: str) -> str:
    path = path.strip()
    if path.startswith("$.."):
        return path
    if path.startswith("$"):
        path = path[1:]
    path = path.lstrip(".")
    return f"$.{path}" if path else "$"


def _parse_regex(text: str) -> Rule | None:
    flags = 0
    if text.startswith("@regex:"):
        pattern = text[len("@regex:") :]
    elif text.startswith("/:"):
        pattern = text[2:]
    else:
        match = RE_REGEX_LITERAL.match(text)
        if not match:
            return None
        pattern = match.group(1)
        for flag in match.group(2):
            flags |= REGEX_FLAGS.get(flag, 0)

    pattern = RE_JS_NAMED_GROUP.sub("(?P<", pattern)
    return Rule(RuleKind.REGEX, selector=pattern, flags=flags, raw=text)


def _parse_css(text: str) -> Rule:
    css = RE_CSS_PREFIX.sub("", text, count=1)
    if css.startswith("+"):
        css = css[1:]
    # "$" marks the current element in Legado
    if css.startswith("$"):
        css = css[1:]

    head, *chain = css.split("@")
    selectors = [convert_legado_selector(head)]
    attribute = None

    if chain:
        *middle, last = chain
        selectors.extend(convert_legado_selector(part) for part in middle)
        if _is_selector_segment(last):
            selectors.append(convert_legado_selector(last))
        else:
            attribute = _normalize_attribute(last)

    selector = " ".join(part for part in selectors if part)
    if not selector:
        if attribute:
            return Rule(RuleKind.ATTRIBUTE, attribute=attribute, raw=text)
        return Rule(RuleKind.NONE, raw=text)

    return Rule(RuleKind.CSS, selector=selector, attribute=attribute, raw=text)


@lru_cache(maxsize=1024)
def parse_rule(rule: str | None) -> Rule:
    """Classify a raw rule string into a :class:`Rule`.

    Classification order (first match wins): empty, JavaScript, DOM-operate,
    JSON path, regex, and finally CSS (after Legado normalization).

    Args:
        rule: The raw rule string from a book source.

    Returns:
        Rule: The parsed rule. Never raises.
    """
    if not rule or not rule.strip():
        return NONE_RULE

    text = rule.strip()

    if text.startswith("@js:") or "<js>" in text:
        logger.debug(f"JavaScript rules are not supported: {text[:50]}")
        return Rule(RuleKind.UNSUPPORTED, raw=text)

    if text.startswith(("@operate:", "$$.")):
        logger.debug(f"DOM operate rules are not supported: {text[:50]}")
        return Rule(RuleKind.UNSUPPORTED, raw=text)

    if text.startswith("$.") or RE_JSON_PREFIX.match(text):
        path = RE_JSON_PREFIX.sub("", text, count=1)
        return Rule(RuleKind.JSONPATH, selector=_normalize_json_path(path), raw=text)

    regex_rule = _parse_regex(text)
    if regex_rule is not None:
        return regex_rule

    return _parse_css(text)


def is_json_rule(rule: str | None) -> bool:
    """Return True if the rule string is a JSON path rule."""
    return parse_rule(rule).kind is RuleKind.JSONPATH
