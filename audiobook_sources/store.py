"""SourceStore: the book-source collection, subscriptions and JSON persistence."""

import json
import logging
import os
import threading
import uuid
from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, TypedDict
from urllib.parse import urlparse

from flask import Flask

from audiobook_sources import extensions
from audiobook_sources.constants import LEGADO_AUDIO_SOURCE_TYPE
from audiobook_sources.engine.network import PageFetcher
from audiobook_sources.engine.normalizer import SearchFieldRules, Source, normalize_source
from audiobook_sources.errors import AppError, InvalidRequestError, InvalidSourceConfig, UnexpectedContentType

logger = logging.getLogger(__name__)

# Fields a client may change through update_source.
UPDATABLE_FIELDS = frozenset(f.name for f in fields(Source)) - {"id", "raw", "subscription_id"}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Subscription:
    """A remote URL serving a JSON array of book sources."""

    id: str
    url: str
    name: str
    added_at: str
    last_updated: str | None = None
    source_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the API and the persistence file."""
        return asdict(self)


class ImportSummary(TypedDict):
    """Counts reported by an import."""

    imported: int
    updated: int
    deleted: int
    total: int


class SourceStore:
    """Thread-safe collection of normalized sources, keyed by id in insertion order."""

    def __init__(self, path: str | None = None, audio_only: bool = True) -> None:
        """Initialize an empty store. Flask apps configure it through init_app."""
        self._lock = threading.RLock()
        self._sources: dict[str, Source] = {}
        self._subscriptions: dict[str, Subscription] = {}
        self.path = path
        self.audio_only = audio_only

    def init_app(self, app: Flask) -> None:
        """Configure persistence from the app config and load the saved collection."""
        self.path = app.config.get("SOURCES_FILE")
        self.audio_only = app.config.get("IMPORT_AUDIO_ONLY", True)
        self.clear()
        if self.path:
            self.load()

    def clear(self) -> None:
        """Drop every source and subscription (without touching the persistence file)."""
        with self._lock:
            self._sources.clear()
            self._subscriptions.clear()

    # --- Sources ---

    def list_sources(self, enabled_only: bool = False) -> list[Source]:
        """Return the sources in insertion order."""
        with self._lock:
            sources = list(self._sources.values())
        if enabled_only:
            return [source for source in sources if source.enabled]
        return sources

    def get(self, source_id: str) -> Source | None:
        """Return a source by id."""
        with self._lock:
            return self._sources.get(source_id)

    def require(self, source_id: str) -> Source:
        """Return a source by id or raise a 404 AppError."""
        source = self.get(source_id)
        if source is None:
            raise AppError(f"Book source '{source_id}' not found.", status_code=404)
        return source

    def add_source(self, raw: Mapping[str, Any]) -> Source:
        """Normalize and add a new source.

        Raises:
            InvalidSourceConfig: If the object cannot be normalized.
            InvalidRequestError: If a source with the same id already exists.
        """
        source = normalize_source(raw)
        if source is None:
            raise InvalidSourceConfig("Invalid book source: no name could be resolved.")
        with self._lock:
            if source.id in self._sources:
                raise InvalidRequestError(f"Book source '{source.name}' already exists.")
            self._sources[source.id] = source
            self._persist()
        logger.info(f"Added book source '{source.name}' ({source.id})")
        return source

    def upsert(self, source: Source) -> bool:
        """Insert a source or replace the one with the same id.

        An existing source keeps its enabled flag.

        Returns:
            bool: True if the source was new.
        """
        with self._lock:
            existing = self._sources.get(source.id)
            if existing is not None:
                source = replace(source, enabled=existing.enabled)
            self._sources[source.id] = source
            self._persist()
        return existing is None

    def update_source(self, source_id: str, updates: Mapping[str, Any]) -> Source:
        """Apply field updates to a source."""
        changes = {key: value for key, value in updates.items() if key in UPDATABLE_FIELDS}
        if isinstance(changes.get("search_field_rules"), Mapping):
            changes["search_field_rules"] = SearchFieldRules(**changes["search_field_rules"])
        with self._lock:
            source = self.require(source_id)
            updated = replace(source, **changes)
            self._sources[source_id] = updated
            self._persist()
        return updated

    def remove_source(self, source_id: str) -> bool:
        """Remove a source. Returns False if it did not exist."""
        with self._lock:
            removed = self._sources.pop(source_id, None)
            if removed is not None:
                self._persist()
        if removed is not None:
            logger.info(f"Removed book source '{removed.name}' ({source_id})")
        return removed is not None

    def toggle_source(self, source_id: str) -> Source:
        """Flip the enabled flag of a source."""
        with self._lock:
            source = self.require(source_id)
            toggled = replace(source, enabled=not source.enabled)
            self._sources[source_id] = toggled
            self._persist()
        return toggled

    def import_from_json(
        self, payload: str | list[Any] | Mapping[str, Any], subscription_id: str | None = None
    ) -> ImportSummary:
        """Import one source object or an array of them. Existing ids are updated in place.

        Raises:
            InvalidRequestError: If the payload is not valid JSON.
            InvalidSourceConfig: If no entry could be normalized.
        """
        data: Any = payload
        if isinstance(payload, str):
            try:
                data = json.loads(payload.lstrip("\ufeff"))
            except ValueError as e:
                raise InvalidRequestError(f"Invalid JSON: {e}") from e

        entries = data if isinstance(data, list) else [data]
        summary: ImportSummary = {"imported": 0, "updated": 0, "deleted": 0, "total": 0}
        for entry in entries:
            source = normalize_source(entry, subscription_id)
            if source is None:
                logger.debug("Skipping an entry without a resolvable name during import.")
                continue
            if self.upsert(source):
                summary["imported"] += 1
            else:
                summary["updated"] += 1

        if entries and not summary["imported"] and not summary["updated"]:
            raise InvalidSourceConfig("No valid book sources found in the imported data.")
        with self._lock:
            summary["total"] = len(self._sources)
        logger.info(f"Imported {summary['imported']} new and updated {summary['updated']} book sources.")
        return summary

    def export_sources(self, ids: list[str] | None = None) -> str:
        """Serialize sources (all, or the given ids) as a JSON array."""
        with self._lock:
            sources = [s for s in self._sources.values() if ids is None or s.id in ids]
        return json.dumps([source.to_dict() for source in sources], ensure_ascii=False, indent=2)

    # --- Subscriptions ---

    def list_subscriptions(self) -> list[Subscription]:
        """Return all subscriptions."""
        with self._lock:
            return list(self._subscriptions.values())

    def get_subscription(self, subscription_id: str) -> Subscription:
        """Return a subscription or raise a 404 AppError."""
        with self._lock:
            subscription = self._subscriptions.get(subscription_id)
        if subscription is None:
            raise AppError(f"Subscription '{subscription_id}' not found.", status_code=404)
        return subscription

    def fetch_subscription_data(self, url: str, fetcher: PageFetcher | None = None) -> Any:
        """Download and decode a subscription payload.

        Raises:
            FetchFailed: If the URL cannot be fetched.
            UnexpectedContentType: If the body is an HTML page or otherwise not JSON.
        """
        fetcher = fetcher if fetcher is not None else extensions.page_fetcher
        text = fetcher.fetch_text(url).lstrip("\ufeff").strip()
        try:
            return json.loads(text)
        except ValueError as e:
            head = text[:200].lower()
            if "<!doctype" in head or "<html" in head:
                raise UnexpectedContentType(
                    "The subscription URL returned an HTML page instead of JSON. Check the URL.", url=url
                ) from e
            raise UnexpectedContentType(f"The subscription URL did not return valid JSON: {e}", url=url) from e

    def import_from_url(
        self,
        url: str,
        subscription_id: str | None = None,
        sync_delete: bool = False,
        audio_only: bool | None = None,
        fetcher: PageFetcher | None = None,
    ) -> ImportSummary:
        """Import sources from a remote JSON array.

        Args:
            url: The subscription URL.
            subscription_id: Tag imported sources with this subscription.
            sync_delete: Remove sources of the subscription that are no longer served.
            audio_only: Keep only Legado audio sources (defaults to the store setting).
            fetcher: Page fetcher to use (defaults to the application's).
        """
        data = self.fetch_subscription_data(url, fetcher)
        if not isinstance(data, list):
            raise UnexpectedContentType("Subscription data must be a JSON array of sources.", url=url)

        if self.audio_only if audio_only is None else audio_only:
            if any(isinstance(item, Mapping) and "bookSourceType" in item for item in data):
                data = [
                    item
                    for item in data
                    if isinstance(item, Mapping) and item.get("bookSourceType") == LEGADO_AUDIO_SOURCE_TYPE
                ]
                logger.info(f"Kept {len(data)} audiobook sources from {url}")

        summary: ImportSummary = {"imported": 0, "updated": 0, "deleted": 0, "total": 0}
        seen_ids: set[str] = set()
        for item in data:
            try:
                source = normalize_source(item, subscription_id)
            except Exception as e:
                logger.warning(f"Skipping malformed source from {url}: {e}")
                continue
            if source is None:
                continue
            seen_ids.add(source.id)
            if self.upsert(source):
                summary["imported"] += 1
            else:
                summary["updated"] += 1

        if data and not summary["imported"] and not summary["updated"]:
            raise InvalidSourceConfig("No valid book sources found at the subscription URL.")

        if sync_delete and subscription_id:
            with self._lock:
                stale = [
                    source_id
                    for source_id, source in self._sources.items()
                    if source.subscription_id == subscription_id and source_id not in seen_ids
                ]
                for source_id in stale:
                    del self._sources[source_id]
                if stale:
                    self._persist()
            summary["deleted"] = len(stale)

        with self._lock:
            summary["total"] = len(self._sources)
        logger.info(
            f"Subscription import from {url}: {summary['imported']} new, "
            f"{summary['updated']} updated, {summary['deleted']} removed."
        )
        return summary

    def add_subscription(
        self, url: str, name: str = "", fetcher: PageFetcher | None = None
    ) -> tuple[Subscription, ImportSummary]:
        """Subscribe to a source list URL and import it.

        An already subscribed URL is refreshed instead. A new subscription is
        discarded if its first import fails.

        Raises:
            InvalidRequestError: If the URL is not an http(s) URL.
        """
        url = (url or "").strip()
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise InvalidRequestError("Invalid subscription URL.")

        with self._lock:
            existing = next((sub for sub in self._subscriptions.values() if sub.url == url), None)
        if existing is not None:
            logger.info(f"Subscription already exists for {url}. Refreshing it.")
            return existing, self.refresh_subscription(existing.id, fetcher)

        subscription = Subscription(
            id=f"sub-{uuid.uuid4().hex[:12]}",
            url=url,
            name=name.strip() or parsed.netloc,
            added_at=_now(),
        )
        with self._lock:
            self._subscriptions[subscription.id] = subscription

        try:
            summary = self.import_from_url(url, subscription.id, sync_delete=False, fetcher=fetcher)
        except Exception:
            with self._lock:
                self._subscriptions.pop(subscription.id, None)
            raise

        with self._lock:
            subscription.last_updated = _now()
            subscription.source_count = summary["imported"] + summary["updated"]
            self._persist()
        return subscription, summary

    def refresh_subscription(self, subscription_id: str, fetcher: PageFetcher | None = None) -> ImportSummary:
        """Re-import a subscription, removing sources it no longer serves."""
        subscription = self.get_subscription(subscription_id)
        summary = self.import_from_url(subscription.url, subscription.id, sync_delete=True, fetcher=fetcher)
        with self._lock:
            subscription.last_updated = _now()
            subscription.source_count = summary["imported"] + summary["updated"]
            self._persist()
        return summary

    def refresh_all_subscriptions(self, fetcher: PageFetcher | None = None) -> list[dict[str, Any]]:
        """Refresh every subscription, reporting each outcome separately."""
        results: list[dict[str, Any]] = []
        for subscription in self.list_subscriptions():
            try:
                summary = self.refresh_subscription(subscription.id, fetcher)
                results.append({"id": subscription.id, "name": subscription.name, "success": True, **summary})
            except AppError as e:
                logger.warning(f"Refreshing subscription '{subscription.name}' failed: {e.message}")
                results.append({"id": subscription.id, "name": subscription.name, "success": False, "error": e.message})
            except Exception as e:
                logger.error(f"Unexpected error refreshing subscription '{subscription.name}': {e}", exc_info=True)
                results.append({"id": subscription.id, "name": subscription.name, "success": False, "error": str(e)})
        return results

    def remove_subscription(self, subscription_id: str, keep_sources: bool = False) -> int:
        """Remove a subscription and, unless kept, the sources it imported.

        Returns:
            int: The number of sources removed.
        """
        with self._lock:
            if self._subscriptions.pop(subscription_id, None) is None:
                raise AppError(f"Subscription '{subscription_id}' not found.", status_code=404)
            removed = 0
            if not keep_sources:
                owned = [sid for sid, s in self._sources.items() if s.subscription_id == subscription_id]
                for source_id in owned:
                    del self._sources[source_id]
                removed = len(owned)
            else:
                for source_id, source in list(self._sources.items()):
                    if source.subscription_id == subscription_id:
                        self._sources[source_id] = replace(source, subscription_id=None)
            self._persist()
        logger.info(f"Removed subscription {subscription_id} ({removed} sources deleted)")
        return removed

    # --- Persistence ---

    def _persist(self) -> None:
        # Callers hold the lock.
        if self.path:
            self.save()

    def save(self) -> None:
        """Write the collection to the persistence file atomically."""
        if not self.path:
            return
        with self._lock:
            payload = {
                "sources": [source.to_dict() for source in self._sources.values()],
                "subscriptions": [sub.to_dict() for sub in self._subscriptions.values()],
            }
        path = Path(self.path)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, path)
        except OSError as e:
            logger.error(f"Failed to save book sources to {path}: {e}", exc_info=True)

    def load(self) -> None:
        """Load the collection from the persistence file (a missing file means empty)."""
        if not self.path:
            return
        path = Path(self.path)
        if not path.exists():
            logger.info(f"No saved book sources at {path}. Starting empty.")
            return

        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load book sources from {path}: {e}. Starting empty.", exc_info=True)
            return
        if not isinstance(data, dict):
            logger.warning(f"{path} does not contain a source collection. Starting empty.")
            return

        with self._lock:
            for entry in data.get("subscriptions", []):
                try:
                    subscription = Subscription(**entry)
                except TypeError as e:
                    logger.warning(f"Skipping malformed subscription in {path}: {e}")
                    continue
                self._subscriptions[subscription.id] = subscription
            for entry in data.get("sources", []):
                source = normalize_source(entry)
                if source is not None:
                    self._sources[source.id] = source
        logger.info(f"Loaded {len(self._sources)} book sources and {len(self._subscriptions)} subscriptions from {path}")
