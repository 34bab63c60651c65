# File: tests/engine/test_normalizer.py
"""Tests for source normalization across native, flat and Legado shapes."""

from typing import Any

import pytest

from audiobook_sources.constants import DEFAULT_GROUP, SOURCE_TYPE
from audiobook_sources.engine.normalizer import Source, first_non_empty, normalize_source
from audiobook_sources.utils import stable_id


def _rule_view(source: Source) -> dict[str, Any]:
    """Everything but the raw import, for comparing sources from different shapes."""
    data = source.to_dict(include_raw=False)
    data.pop("id")
    return data


def test_legado_source_with_nested_json_strings(legado_raw: dict[str, Any]) -> None:
    """Rule groups given as JSON strings or objects are both understood."""
    source = normalize_source(legado_raw)

    assert source is not None
    assert source.name == "Legado Audio"
    assert source.base_url == "https://legado.example"
    # No explicit id: the base URL identifies the source
    assert source.id == "https://legado.example"
    assert source.search_url_template == "/search?q={{key}}&page={{page}}"
    assert source.search_list_rule == "class.book-item"
    assert source.search_field_rules.name == "tag.h3@text"
    assert source.search_field_rules.book_url == "tag.a@href"
    assert source.chapter_list_rule == "id.list@tag.li"
    assert source.chapter_name_rule == "a@text"
    assert source.chapter_url_rule == "a@href"
    assert source.audio_url_rule == "audio@src"
    assert source.enabled is True
    assert source.group == DEFAULT_GROUP
    assert source.raw == legado_raw


def test_aliases_resolve_to_the_same_source() -> None:
    """The three common shapes of one source normalize identically."""
    native = {
        "sourceName": "Same",
        "sourceUrl": "http://same",
        "searchUrl": "/s?q={{key}}",
        "searchList": "li",
        "searchName": "a@text",
        "searchNoteUrl": "a@href",
        "chapterList": "ul li",
    }
    flat = {
        "name": "Same",
        "baseUrl": "http://same",
        "searchUrlTemplate": "/s?q={{key}}",
        "searchListRule": "li",
        "searchFieldRules": {"name": "a@text", "bookUrl": "a@href"},
        "chapterListRule": "ul li",
    }
    legado = {
        "bookSourceName": "Same",
        "bookSourceUrl": "http://same",
        "ruleSearchUrl": "/s?q={{key}}",
        "ruleSearch": {"bookList": "li", "name": "a@text", "bookUrl": "a@href"},
        "ruleToc": '{"chapterList": "ul li"}',
    }

    sources = [normalize_source(raw) for raw in (native, flat, legado)]
    assert all(source is not None for source in sources)
    views = [_rule_view(source) for source in sources if source is not None]
    assert views[0] == views[1] == views[2]


def test_flat_fields_take_precedence_over_nested_groups() -> None:
    """The first non-empty alias wins."""
    source = normalize_source(
        {
            "name": "Order",
            "searchList": "li.flat",
            "ruleSearch": {"bookList": "li.nested"},
            "chapterName": "",
            "ruleToc": {"chapterName": "a@text"},
        }
    )
    assert source is not None
    assert source.search_list_rule == "li.flat"
    # Empty strings fall through to the next alias
    assert source.chapter_name_rule == "a@text"


def test_enabled_explore_false_disables_source() -> None:
    """Either enabled or enabledExplore set to false disables the source."""
    assert normalize_source({"name": "A", "enabledExplore": False}).enabled is False  # type: ignore[union-attr]
    assert normalize_source({"name": "A", "enabled": False}).enabled is False  # type: ignore[union-attr]
    assert normalize_source({"name": "A", "enabled": "no"}).enabled is True  # type: ignore[union-attr]


def test_id_falls_back_to_name_hash() -> None:
    """Without id or URL, a deterministic id is derived from the name."""
    source = normalize_source({"name": "Lonely"})
    assert source is not None
    assert source.id == f"source-{stable_id('Lonely')}"
    assert normalize_source({"name": "Lonely"}).id == source.id  # type: ignore[union-attr]


def test_explicit_id_wins() -> None:
    """An explicit id beats the base URL."""
    source = normalize_source({"id": "mine", "name": "A", "url": "http://a"})
    assert source is not None
    assert source.id == "mine"
    assert source.base_url == "http://a"


@pytest.mark.parametrize("raw", [None, "text", 42, [], {}, {"name": "   "}, {"searchUrl": "/s"}])
def test_unnameable_input_returns_none(raw: Any) -> None:
    """Inputs without a resolvable name are rejected."""
    assert normalize_source(raw) is None


def test_invalid_nested_json_is_ignored() -> None:
    """A rule group that is not a JSON object contributes nothing."""
    source = normalize_source({"name": "Broken", "ruleSearch": "{not json", "ruleToc": "[1, 2]"})
    assert source is not None
    assert source.search_list_rule == ""
    assert source.chapter_list_rule == ""


def test_group_and_description() -> None:
    """Group and comment fields map onto group and description."""
    source = normalize_source({"bookSourceName": "G", "bookSourceGroup": "Audio", "bookSourceComment": "Nice"})
    assert source is not None
    assert source.group == "Audio"
    assert source.description == "Nice"


def test_native_round_trip(legado_raw: dict[str, Any]) -> None:
    """Serializing and normalizing again yields an equal source."""
    source = normalize_source(legado_raw, subscription_id="sub-1")
    assert source is not None

    data = source.to_dict()
    assert data["type"] == SOURCE_TYPE
    assert data["_raw"] == legado_raw

    again = normalize_source(data)
    assert again == source
    assert again is not None
    assert again.subscription_id == "sub-1"
    assert again.raw == legado_raw


def test_to_dict_without_raw() -> None:
    """The public view omits the original import."""
    source = normalize_source({"name": "A"})
    assert source is not None
    assert "_raw" not in source.to_dict(include_raw=False)


def test_searchable_property() -> None:
    """Only sources with a search URL can be searched."""
    assert normalize_source({"name": "A", "searchUrl": "/s"}).searchable is True  # type: ignore[union-attr]
    assert normalize_source({"name": "A"}).searchable is False  # type: ignore[union-attr]


def test_first_non_empty_skips_booleans_and_stringifies_numbers() -> None:
    """Booleans are never rule text; numbers are."""
    raw = {"a": True, "b": 3, "c": "x"}
    assert first_non_empty(raw, {}, ("a", "b", "c")) == "3"
    assert first_non_empty(raw, {"g": {"k": " v "}}, ("missing", "g.k")) == "v"
    assert first_non_empty(raw, {}, ("missing",)) == ""
