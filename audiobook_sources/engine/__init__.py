"""Rule engine for third-party book sources."""

from .core import (
    Chapter,
    ChapterList,
    SearchPage,
    SearchResult,
    ValidationReport,
    get_audio_url,
    get_chapters,
    search,
    search_sources,
    validate_source,
)
from .extractor import ListItem, extract, extract_field, extract_list, parse_html
from .network import PageFetcher, RequestsPageFetcher
from .normalizer import SearchFieldRules, Source, normalize_source
from .rules import Rule, RuleKind, parse_rule
from .templates import resolve_template, split_url_config

# Expose public API
__all__ = [
    "Chapter",
    "ChapterList",
    "ListItem",
    "PageFetcher",
    "RequestsPageFetcher",
    "Rule",
    "RuleKind",
    "SearchFieldRules",
    "SearchPage",
    "SearchResult",
    "Source",
    "ValidationReport",
    "extract",
    "extract_field",
    "extract_list",
    "get_audio_url",
    "get_chapters",
    "normalize_source",
    "parse_html",
    "parse_rule",
    "resolve_template",
    "search",
    "search_sources",
    "split_url_config",
    "validate_source",
]
