# File: audiobook_sources/engine/core.py
"""Orchestrators: search, chapter listing, audio URL resolution and source validation."""

import logging
import threading
from collections.abc import Mapping
from typing import Any, TypedDict

from audiobook_sources import extensions
from audiobook_sources.constants import (
    DEFAULT_CHAPTER_NAME_RULE,
    DEFAULT_CHAPTER_URL_RULE,
    DEFAULT_PAGE_SIZE,
    FALLBACK_CHAPTER_URL_RULE,
    UNKNOWN_SOURCE_NAME,
)
from audiobook_sources.engine.extractor import (
    ListItem,
    extract,
    extract_field,
    extract_list,
    find_audio_url,
    parse_html,
    text_content,
)
from audiobook_sources.engine.network import PageFetcher, parse_json_text
from audiobook_sources.engine.normalizer import Source
from audiobook_sources.engine.rules import RuleKind, is_json_rule, parse_rule
from audiobook_sources.engine.templates import resolve_body, resolve_template, split_url_config
from audiobook_sources.errors import (
    AppError,
    FetchFailed,
    InvalidRequestError,
    InvalidSourceConfig,
    NoAudioRuleMatched,
    UnexpectedContentType,
)
from audiobook_sources.utils import as_text, resolve_url

logger = logging.getLogger(__name__)


class SearchResult(TypedDict):
    """One book found by a source search."""

    id: str
    source_id: str
    title: str
    cover: str
    author: str
    artist: str
    description: str
    category: str
    book_url: str


class SearchPage(TypedDict):
    """Results of a single-source search."""

    total: int
    page: int
    results: list[SearchResult]


class Chapter(TypedDict):
    """A playable chapter of a book."""

    index: int
    title: str
    chapter_url: str


class ChapterList(TypedDict):
    """Chapters of a book, in page order."""

    total: int
    chapters: list[Chapter]


class ValidationReport(TypedDict, total=False):
    """Outcome of a source reachability check."""

    valid: bool
    has_search: bool
    has_chapter: bool
    name: str
    error: str


class SourceSearchOutcome(TypedDict):
    """Per-source entry of a multi-source search."""

    source_id: str
    source_name: str
    results: list[SearchResult]
    error: str | None


def _get_fetcher(fetcher: PageFetcher | None) -> PageFetcher:
    return fetcher if fetcher is not None else extensions.page_fetcher


def _field(item: Any, rule: str, fallback_keys: tuple[str, ...]) -> str:
    """Extract a field with a rule, falling back to well-known keys of JSON items."""
    value = as_text(extract_field(item, rule)) if rule else ""
    if not value and isinstance(item, Mapping):
        for key in fallback_keys:
            value = as_text(item.get(key))
            if value:
                break
    return value


def _json_items(data: Any, list_rule: str) -> list[Any]:
    """Turn a JSON response into list items using the list rule (or the value itself)."""
    if not list_rule:
        value = data
    elif isinstance(data, Mapping):
        # Plain keys ("list") work as well as JSON paths ("$.data.list")
        value = extract_field(data, list_rule)
    else:
        value = extract(data, list_rule)
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _snippet(item: Any) -> str:
    if isinstance(item, ListItem):
        return str(item.element)[:300].replace("\n", " ")
    return str(item)[:300]


def _build_search_result(source: Source, item: Any, index: int, page: int) -> SearchResult:
    rules = source.search_field_rules
    if isinstance(item, str):
        title = book_url = item.strip()
        cover = author = artist = description = category = ""
    else:
        title = _field(item, rules.name, ("name", "title", "bookName"))
        cover = _field(item, rules.cover, ("cover", "coverUrl"))
        author = _field(item, rules.author, ("author",))
        artist = _field(item, rules.artist, ("artist", "announcer"))
        description = _field(item, rules.intro, ("intro", "description"))
        category = _field(item, rules.kind, ("kind", "category"))
        book_url = _field(item, rules.book_url, ("bookUrl", "noteUrl", "url"))

    return {
        "id": f"{source.id}-{page}-{index}",
        "source_id": source.id,
        "title": title,
        "cover": resolve_url(source.base_url, cover) if cover else "",
        "author": author,
        "artist": artist,
        "description": description,
        "category": category,
        "book_url": resolve_url(source.base_url, book_url) if book_url else "",
    }


def search(
    source: Source,
    keyword: str,
    page: int = 1,
    *,
    fetcher: PageFetcher | None = None,
    page_size: int = DEFAULT_PAGE_SIZE,
    signal: threading.Event | None = None,
) -> SearchPage:
    """Search a source for a keyword.

    Args:
        source: The normalized source.
        keyword: The search term.
        page: The 1-based page number.
        fetcher: Page fetcher to use (defaults to the application's).
        page_size: Value substituted for ``{{pageSize}}``.
        signal: Optional cancellation signal forwarded to the fetcher.

    Returns:
        SearchPage: The titled results found on the page.

    Raises:
        InvalidSourceConfig: If the source has no search URL (raised before any fetch).
        FetchFailed: If the search page cannot be fetched.
        UnexpectedContentType: If a JSON response does not parse.
    """
    if not source.search_url_template:
        raise InvalidSourceConfig(f"Source '{source.name}' does not support search (no search URL).")

    fetcher = _get_fetcher(fetcher)
    url_template, options = split_url_config(source.search_url_template)
    params = {"key": keyword, "page": page, "pageSize": page_size}
    charset = options.get("charset")
    method = options.get("method", "GET")

    search_path = resolve_template(url_template, params, charset=charset)
    full_url = resolve_url(source.base_url, search_path)
    body = resolve_body(options.get("body"), params)
    headers = options.get("headers")
    list_rule = source.search_list_rule
    expects_json = ".json" in url_template or method == "POST" or is_json_rule(list_rule)

    logger.info(f"Searching '{keyword}' (page {page}) on source '{source.name}': {method} {full_url}")

    try:
        if expects_json:
            data = fetcher.fetch_json(
                full_url, method=method, body=body, headers=headers, charset=charset, signal=signal
            )
            items = _json_items(data, list_rule)
        else:
            html = fetcher.fetch_text(
                full_url, method=method, body=body, headers=headers, charset=charset, signal=signal
            )
            items = extract_list(parse_html(html), list_rule, full_url)
    except (FetchFailed, UnexpectedContentType) as e:
        logger.error(f"Search failed for source '{source.name}' ({source.id}) at {full_url}: {e.message}")
        raise

    results: list[SearchResult] = []
    for index, item in enumerate(items):
        try:
            result = _build_search_result(source, item, index, page)
        except Exception as e:
            logger.error(
                f"Could not process search item {index} from source '{source.name}' ({source.id}) "
                f"at {full_url} with list rule '{list_rule}'. Error: {e}. Snippet: {_snippet(item)}"
            )
            continue
        if result["title"]:
            results.append(result)

    if items and not results:
        logger.warning(
            f"Source '{source.name}' ({source.id}) matched {len(items)} items at {full_url} "
            f"but none had a title (name rule '{source.search_field_rules.name}')."
        )

    return {"total": len(results), "page": page, "results": results}


def _book_url(book: Mapping[str, Any] | str) -> str:
    if isinstance(book, str):
        return book.strip()
    return as_text(book.get("book_url") or book.get("bookUrl"))


def _chapter_from_element(source: Source, item: ListItem) -> tuple[str, str]:
    name_rule = source.chapter_name_rule or DEFAULT_CHAPTER_NAME_RULE
    title = as_text(extract_field(item, name_rule)) or text_content(item.element)

    if source.chapter_url_rule:
        chapter_url = as_text(extract_field(item, source.chapter_url_rule))
    else:
        chapter_url = as_text(extract_field(item, DEFAULT_CHAPTER_URL_RULE)) or as_text(
            extract_field(item, FALLBACK_CHAPTER_URL_RULE)
        )
    return title, chapter_url


def _chapter_from_json(source: Source, item: Any) -> tuple[str, str]:
    if isinstance(item, str):
        return item.strip(), item.strip()
    title = _field(item, source.chapter_name_rule, ("name", "title", "chapterName"))
    chapter_url = _field(item, source.chapter_url_rule, ("url", "chapterUrl", "href"))
    return title, chapter_url


def get_chapters(
    source: Source,
    book: Mapping[str, Any] | str,
    *,
    fetcher: PageFetcher | None = None,
    signal: threading.Event | None = None,
) -> ChapterList:
    """List the chapters of a book.

    Args:
        source: The normalized source.
        book: A search result (or any mapping with ``book_url``), or the book URL itself.
        fetcher: Page fetcher to use (defaults to the application's).
        signal: Optional cancellation signal forwarded to the fetcher.

    Raises:
        InvalidRequestError: If the book has no URL.
        InvalidSourceConfig: If the source has no chapter list rule (raised before any fetch).
        FetchFailed: If the book page cannot be fetched.
    """
    book_url = _book_url(book)
    if not book_url:
        raise InvalidRequestError("A book URL is required to load chapters.")
    if not source.chapter_list_rule:
        raise InvalidSourceConfig(f"Source '{source.name}' has no chapter list rule.")

    fetcher = _get_fetcher(fetcher)
    list_rule = source.chapter_list_rule
    json_list = parse_rule(list_rule).kind is RuleKind.JSONPATH

    logger.info(f"Loading chapters from source '{source.name}' ({source.id}): {book_url}")
    try:
        if json_list:
            items: list[Any] = _json_items(fetcher.fetch_json(book_url, signal=signal), list_rule)
        else:
            items = extract_list(parse_html(fetcher.fetch_text(book_url, signal=signal)), list_rule, book_url)
    except (FetchFailed, UnexpectedContentType) as e:
        logger.error(f"Chapter list failed for source '{source.name}' ({source.id}) at {book_url}: {e.message}")
        raise

    chapters: list[Chapter] = []
    for item in items:
        try:
            if isinstance(item, ListItem):
                title, chapter_url = _chapter_from_element(source, item)
            else:
                title, chapter_url = _chapter_from_json(source, item)
        except Exception as e:
            logger.error(
                f"Could not process chapter from source '{source.name}' ({source.id}) at {book_url} "
                f"with list rule '{list_rule}'. Error: {e}. Snippet: {_snippet(item)}"
            )
            continue

        if not title or not chapter_url:
            continue
        chapters.append(
            {
                "index": len(chapters),
                "title": title,
                "chapter_url": resolve_url(book_url, chapter_url),
            }
        )

    return {"total": len(chapters), "chapters": chapters}


def get_audio_url(
    source: Source,
    chapter: Mapping[str, Any] | str,
    *,
    fetcher: PageFetcher | None = None,
    signal: threading.Event | None = None,
) -> str:
    """Resolve the playable audio URL of a chapter.

    With an audio rule, the rule's first non-empty match is used. Without
    one, audio/source elements and then inline scripts are scanned.

    Raises:
        InvalidRequestError: If the chapter has no URL.
        FetchFailed: If the chapter page cannot be fetched.
        NoAudioRuleMatched: If nothing yields an audio URL.
    """
    if isinstance(chapter, str):
        chapter_url = chapter.strip()
    else:
        chapter_url = as_text(chapter.get("chapter_url") or chapter.get("chapterUrl"))
    if not chapter_url:
        raise InvalidRequestError("A chapter URL is required to resolve audio.")

    fetcher = _get_fetcher(fetcher)
    try:
        page = fetcher.fetch_text(chapter_url, signal=signal)
    except FetchFailed as e:
        logger.error(f"Audio lookup failed for source '{source.name}' ({source.id}) at {chapter_url}: {e.message}")
        raise

    if source.audio_url_rule:
        rule = parse_rule(source.audio_url_rule)
        content: Any
        if rule.kind is RuleKind.JSONPATH:
            content = parse_json_text(page, chapter_url)
        elif rule.kind is RuleKind.REGEX:
            content = page
        else:
            content = parse_html(page)

        audio_url = as_text(extract(content, rule, chapter_url))
        if not audio_url:
            logger.warning(
                f"Audio rule '{source.audio_url_rule}' of source '{source.name}' ({source.id}) "
                f"matched nothing at {chapter_url}"
            )
            raise NoAudioRuleMatched(f"The audio rule of '{source.name}' found no audio URL on the chapter page.")
        return resolve_url(chapter_url, audio_url)

    audio_url = find_audio_url(parse_html(page), chapter_url)
    if not audio_url:
        logger.warning(f"No audio found for source '{source.name}' ({source.id}) at {chapter_url}")
        raise NoAudioRuleMatched(
            f"No audio URL found on the chapter page. Configure an audio rule for '{source.name}'."
        )
    return resolve_url(chapter_url, audio_url)


def validate_source(
    source: Source,
    *,
    fetcher: PageFetcher | None = None,
    signal: threading.Event | None = None,
) -> ValidationReport:
    """Check that a source's base URL is reachable. Never raises."""
    name = source.name or UNKNOWN_SOURCE_NAME
    report: ValidationReport = {
        "valid": False,
        "has_search": bool(source.search_url_template),
        "has_chapter": bool(source.chapter_list_rule),
        "name": name,
    }

    if not source.base_url:
        report["error"] = "Source has no URL."
        return report

    try:
        _get_fetcher(fetcher).fetch_text(source.base_url, signal=signal)
    except AppError as e:
        logger.warning(f"Validation failed for source '{name}' ({source.id}) at {source.base_url}: {e.message}")
        report["error"] = e.message
        return report
    except Exception as e:
        logger.error(f"Unexpected error validating source '{name}' ({source.id}): {e}", exc_info=True)
        report["error"] = str(e)
        return report

    report["valid"] = True
    return report


def search_sources(
    sources: list[Source],
    keyword: str,
    page: int = 1,
    *,
    fetcher: PageFetcher | None = None,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> list[SourceSearchOutcome]:
    """Search several sources concurrently on the shared executor.

    Disabled and unsearchable sources are skipped. A failing source is
    reported in its own entry and never fails the whole search.
    """
    fetcher = _get_fetcher(fetcher)
    candidates = [source for source in sources if source.enabled and source.search_url_template]
    logger.info(f"Searching '{keyword}' across {len(candidates)} sources.")

    futures = [
        (source, extensions.executor.submit(search, source, keyword, page, fetcher=fetcher, page_size=page_size))
        for source in candidates
    ]

    outcomes: list[SourceSearchOutcome] = []
    for source, future in futures:
        try:
            result = future.result()
        except AppError as e:
            logger.warning(f"Search on source '{source.name}' ({source.id}) failed: {e.message}")
            outcomes.append({"source_id": source.id, "source_name": source.name, "results": [], "error": e.message})
            continue
        except Exception as e:
            logger.error(f"Unexpected error searching source '{source.name}' ({source.id}): {e}", exc_info=True)
            outcomes.append({"source_id": source.id, "source_name": source.name, "results": [], "error": str(e)})
            continue
        outcomes.append(
            {"source_id": source.id, "source_name": source.name, "results": result["results"], "error": None}
        )
    return outcomes
