# File: audiobook_sources/engine/normalizer.py
"""Source normalizer.

Book sources arrive in several shapes: this application's own flat format,
"my audiobook" exports, and Legado objects whose rule groups (``ruleSearch``,
``ruleToc``, ``ruleContent``, ``ruleBookInfo``) may be nested objects or JSON
strings. :func:`normalize_source` maps all of them onto one :class:`Source`.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Final

from audiobook_sources.constants import DEFAULT_GROUP, SOURCE_TYPE
from audiobook_sources.utils import safe_parse_json, stable_id

logger = logging.getLogger(__name__)

# Rule groups that may be nested objects or JSON-encoded strings.
NESTED_GROUPS: Final[tuple[str, ...]] = ("ruleSearch", "ruleToc", "ruleContent", "ruleBookInfo", "searchFieldRules")

# Ordered alias chains: flat field, rule-prefixed alias, nested Legado field, generic fallback.
# "group.key" entries are looked up inside the parsed nested group.
FIELD_CHAINS: Final[dict[str, tuple[str, ...]]] = {
    "name": ("sourceName", "bookSourceName", "name", "title"),
    "base_url": ("sourceUrl", "bookSourceUrl", "baseUrl", "url"),
    "group": ("group", "sourceGroup", "bookSourceGroup"),
    "description": ("description", "sourceComment", "bookSourceComment", "sourceGroup", "bookSourceGroup"),
    "search_url_template": ("searchUrl", "searchUrlTemplate", "ruleSearchUrl", "ruleSearch.searchUrl", "ruleSearch.url"),
    "search_list_rule": ("searchList", "searchListRule", "ruleSearchList", "ruleSearch.bookList", "ruleSearch.list"),
    "search.name": ("searchName", "ruleSearchName", "searchFieldRules.name", "ruleSearch.name"),
    "search.cover": (
        "searchCover",
        "ruleSearchCoverUrl",
        "searchFieldRules.cover",
        "ruleSearch.coverUrl",
        "ruleBookInfo.coverUrl",
    ),
    "search.author": ("searchAuthor", "ruleSearchAuthor", "searchFieldRules.author", "ruleSearch.author", "ruleBookInfo.author"),
    "search.artist": ("searchArtist", "ruleSearchArtist", "searchFieldRules.artist", "ruleSearch.artist"),
    "search.intro": ("searchIntro", "ruleSearchIntroduce", "searchFieldRules.intro", "ruleSearch.intro", "ruleBookInfo.intro"),
    "search.kind": ("searchKind", "ruleSearchKind", "searchFieldRules.kind", "ruleSearch.kind", "ruleBookInfo.kind"),
    "search.book_url": (
        "searchNoteUrl",
        "ruleSearchNoteUrl",
        "searchFieldRules.bookUrl",
        "ruleSearch.bookUrl",
        "ruleSearch.noteUrl",
    ),
    "chapter_list_rule": ("chapterList", "chapterListRule", "ruleChapterList", "ruleToc.chapterList"),
    "chapter_name_rule": ("chapterName", "chapterNameRule", "ruleChapterName", "ruleToc.chapterName"),
    "chapter_url_rule": ("chapterUrl", "chapterUrlRule", "ruleChapterUrl", "ruleToc.chapterUrl"),
    "audio_url_rule": ("audioUrlRule", "ruleContentUrl", "contentUrl", "ruleContent.content"),
}


@dataclass
class SearchFieldRules:
    """Per-field rules applied to each search result item."""

    name: str = ""
    cover: str = ""
    author: str = ""
    artist: str = ""
    intro: str = ""
    kind: str = ""
    book_url: str = ""


@dataclass
class Source:
    """A normalized book source."""

    id: str
    name: str
    base_url: str = ""
    enabled: bool = True
    group: str = DEFAULT_GROUP
    description: str = ""
    subscription_id: str | None = None
    search_url_template: str = ""
    search_list_rule: str = ""
    search_field_rules: SearchFieldRules = field(default_factory=SearchFieldRules)
    chapter_list_rule: str = ""
    chapter_name_rule: str = ""
    chapter_url_rule: str = ""
    audio_url_rule: str = ""
    # The unmodified import, kept for export.
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def searchable(self) -> bool:
        """Whether the source can be searched at all."""
        return bool(self.search_url_template)

    def to_dict(self, include_raw: bool = True) -> dict[str, Any]:
        """Serialize into this application's flat source format.

        The output normalizes back into an equal Source.
        """
        rules = self.search_field_rules
        data: dict[str, Any] = {
            "type": SOURCE_TYPE,
            "id": self.id,
            "name": self.name,
            "sourceUrl": self.base_url,
            "enabled": self.enabled,
            "group": self.group,
            "description": self.description,
            "subscriptionId": self.subscription_id,
            "searchUrl": self.search_url_template,
            "searchList": self.search_list_rule,
            "searchName": rules.name,
            "searchCover": rules.cover,
            "searchAuthor": rules.author,
            "searchArtist": rules.artist,
            "searchIntro": rules.intro,
            "searchKind": rules.kind,
            "searchNoteUrl": rules.book_url,
            "chapterList": self.chapter_list_rule,
            "chapterName": self.chapter_name_rule,
            "chapterUrl": self.chapter_url_rule,
            "audioUrlRule": self.audio_url_rule,
        }
        if include_raw:
            data["_raw"] = self.raw
        return data


def _lookup(raw: Mapping[str, Any], nested: Mapping[str, dict[str, Any]], key: str) -> Any:
    if "." in key:
        group, sub_key = key.split(".", 1)
        return nested.get(group, {}).get(sub_key)
    return raw.get(key)


def first_non_empty(raw: Mapping[str, Any], nested: Mapping[str, dict[str, Any]], keys: tuple[str, ...]) -> str:
    """Return the first non-empty string value along an alias chain."""
    for key in keys:
        value = _lookup(raw, nested, key)
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def normalize_source(raw: Any, subscription_id: str | None = None) -> Source | None:
    """Normalize a raw source object into a :class:`Source`.

    Args:
        raw: The imported object (native, "my audiobook" or Legado format).
        subscription_id: The subscription this source was imported from, if any.

    Returns:
        Source | None: The normalized source, or None if no name can be resolved.
    """
    if not isinstance(raw, Mapping):
        return None

    nested = {group: safe_parse_json(raw.get(group)) for group in NESTED_GROUPS}

    def resolve(name: str) -> str:
        return first_non_empty(raw, nested, FIELD_CHAINS[name])

    name = resolve("name")
    if not name:
        logger.debug(f"Skipping source without a resolvable name (keys: {sorted(raw.keys())[:10]})")
        return None

    base_url = resolve("base_url")
    source_id = first_non_empty(raw, nested, ("id",)) or base_url or f"source-{stable_id(name)}"

    original: Mapping[str, Any] = raw
    if raw.get("type") == SOURCE_TYPE:
        subscription_id = subscription_id or raw.get("subscriptionId")
        if isinstance(raw.get("_raw"), Mapping) and raw["_raw"]:
            original = raw["_raw"]

    return Source(
        id=source_id,
        name=name,
        base_url=base_url,
        enabled=raw.get("enabled") is not False and raw.get("enabledExplore") is not False,
        group=resolve("group") or DEFAULT_GROUP,
        description=resolve("description"),
        subscription_id=subscription_id,
        search_url_template=resolve("search_url_template"),
        search_list_rule=resolve("search_list_rule"),
        search_field_rules=SearchFieldRules(
            name=resolve("search.name"),
            cover=resolve("search.cover"),
            author=resolve("search.author"),
            artist=resolve("search.artist"),
            intro=resolve("search.intro"),
            kind=resolve("search.kind"),
            book_url=resolve("search.book_url"),
        ),
        chapter_list_rule=resolve("chapter_list_rule"),
        chapter_name_rule=resolve("chapter_name_rule"),
        chapter_url_rule=resolve("chapter_url_rule"),
        audio_url_rule=resolve("audio_url_rule"),
        raw=dict(original),
    )
