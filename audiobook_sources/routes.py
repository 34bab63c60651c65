# File: audiobook_sources/routes.py
"""Routes module exposing the JSON API."""

import logging
from typing import Any

from flask import Blueprint, Response, current_app, jsonify, request
from flask_wtf.csrf import generate_csrf
from werkzeug.exceptions import HTTPException

from audiobook_sources.constants import MIN_SEARCH_QUERY_LENGTH, PRESET_SUBSCRIPTIONS

from .engine import get_audio_url, get_chapters, search, search_sources, validate_source
from .errors import AppError, InvalidRequestError
from .extensions import limiter, source_store

logger = logging.getLogger(__name__)

# Create the Blueprint
main_bp = Blueprint("main", __name__)


@main_bp.errorhandler(AppError)
def handle_app_error(error: AppError) -> tuple[Response, int]:
    """Convert application errors into JSON responses."""
    return jsonify({"message": error.message}), error.status_code


@main_bp.errorhandler(Exception)
def handle_unexpected_error(error: Exception) -> Response | HTTPException | tuple[Response, int]:
    """Log unexpected failures and hide their details behind a 500."""
    if isinstance(error, HTTPException):
        return error
    logger.error(f"Unhandled error on {request.method} {request.path}: {error}", exc_info=True)
    return jsonify({"message": "Internal server error"}), 500


def _json_body() -> dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidRequestError("Invalid JSON format")
    return data


def _search_args() -> tuple[str, int]:
    query = (request.args.get("q") or request.args.get("query") or "").strip()
    if len(query) < MIN_SEARCH_QUERY_LENGTH:
        raise InvalidRequestError("Search query is required.")
    page = request.args.get("page", 1, type=int)
    if page < 1:
        raise InvalidRequestError("Page must be a positive integer.")
    return query, page


@main_bp.route("/health")
def health() -> Response:
    """Perform a health check."""
    return jsonify({"status": "ok"})


@main_bp.route("/api/csrf-token")
def csrf_token() -> Response:
    """Return a CSRF token for state-changing requests."""
    return jsonify({"csrf_token": generate_csrf()})


@main_bp.route("/api/sources", methods=["GET"])
def list_sources() -> Response:
    """List book sources.

    Query Params:
        enabled (str): If "1"/"true", only enabled sources are returned.
    """
    enabled_only = request.args.get("enabled", "").lower() in ("1", "true", "yes", "on")
    sources = source_store.list_sources(enabled_only=enabled_only)
    return jsonify({"sources": [source.to_dict(include_raw=False) for source in sources]})


@main_bp.route("/api/sources", methods=["POST"])
def add_sources() -> tuple[Response, int]:
    """Add one source (JSON object) or import many (JSON array).

    Returns:
        Response: The created source (201), or the import summary for arrays (200).
    """
    data = request.get_json(silent=True)
    if isinstance(data, list):
        summary = source_store.import_from_json(data)
        return jsonify(summary), 200
    if not isinstance(data, dict):
        raise InvalidRequestError("Invalid JSON format")

    source = source_store.add_source(data)
    return jsonify(source.to_dict(include_raw=False)), 201


@main_bp.route("/api/sources/export")
def export_sources() -> Response:
    """Export sources as a JSON file (all, or the comma-separated ids given)."""
    ids_param = request.args.get("ids")
    ids = [value for value in ids_param.split(",") if value] if ids_param else None
    return Response(
        source_store.export_sources(ids),
        mimetype="application/json",
        headers={"Content-Disposition": "attachment; filename=book-sources.json"},
    )


@main_bp.route("/api/sources/<path:source_id>", methods=["DELETE"])
def delete_source(source_id: str) -> Response | tuple[Response, int]:
    """Remove a source."""
    if not source_store.remove_source(source_id):
        return jsonify({"message": "Book source not found"}), 404
    return jsonify({"message": "Book source removed."})


@main_bp.route("/api/sources/<path:source_id>/toggle", methods=["POST"])
def toggle_source(source_id: str) -> Response:
    """Enable or disable a source."""
    source = source_store.toggle_source(source_id)
    return jsonify(source.to_dict(include_raw=False))


@main_bp.route("/api/sources/<path:source_id>/validate")
@limiter.limit("30 per minute")
def validate(source_id: str) -> Response:
    """Check that a source's site is reachable."""
    source = source_store.require(source_id)
    return jsonify(validate_source(source))


@main_bp.route("/api/sources/<path:source_id>/search")
@limiter.limit("30 per minute")
def search_source(source_id: str) -> Response:
    """Search a single source.

    Query Params:
        q (str): The search term.
        page (int): The page number (default 1).
    """
    source = source_store.require(source_id)
    query, page = _search_args()
    logger.info(f"Received search query '{query}' for source '{source.name}'")
    result = search(source, query, page, page_size=current_app.config.get("SEARCH_PAGE_SIZE", 20))
    return jsonify(result)


@main_bp.route("/api/sources/<path:source_id>/chapters", methods=["POST"])
@limiter.limit("60 per minute")
def chapters(source_id: str) -> Response:
    """List the chapters of a book.

    JSON Body:
        book_url (str): The book page URL from a search result.
    """
    source = source_store.require(source_id)
    data = _json_body()
    return jsonify(get_chapters(source, data))


@main_bp.route("/api/sources/<path:source_id>/audio-url", methods=["POST"])
@limiter.limit("60 per minute")
def audio_url(source_id: str) -> Response:
    """Resolve the audio URL of a chapter.

    JSON Body:
        chapter_url (str): The chapter page URL.
    """
    source = source_store.require(source_id)
    data = _json_body()
    return jsonify({"audio_url": get_audio_url(source, data)})


@main_bp.route("/api/search")
@limiter.limit("10 per minute")
def search_all() -> Response:
    """Search every enabled source concurrently."""
    query, page = _search_args()
    sources = source_store.list_sources(enabled_only=True)
    logger.info(f"Received search query '{query}' for {len(sources)} enabled sources")
    outcomes = search_sources(sources, query, page, page_size=current_app.config.get("SEARCH_PAGE_SIZE", 20))
    return jsonify({"query": query, "page": page, "sources": outcomes})


@main_bp.route("/api/subscriptions", methods=["GET"])
def list_subscriptions() -> Response:
    """List subscriptions."""
    return jsonify({"subscriptions": [sub.to_dict() for sub in source_store.list_subscriptions()]})


@main_bp.route("/api/subscriptions", methods=["POST"])
@limiter.limit("10 per minute")
def add_subscription() -> tuple[Response, int]:
    """Subscribe to a remote source list.

    JSON Body:
        url (str): The subscription URL.
        name (str): Optional display name.
    """
    data = _json_body()
    url = data.get("url")
    name = data.get("name") or ""
    if not isinstance(url, str) or not url.strip():
        raise InvalidRequestError("Subscription URL is required")
    if not isinstance(name, str):
        raise InvalidRequestError("Subscription name must be a string")

    subscription, summary = source_store.add_subscription(url, name)
    return jsonify({"subscription": subscription.to_dict(), **summary}), 201


@main_bp.route("/api/subscriptions/presets")
def subscription_presets() -> Response:
    """List the built-in subscription suggestions."""
    return jsonify({"presets": PRESET_SUBSCRIPTIONS})


@main_bp.route("/api/subscriptions/refresh", methods=["POST"])
@limiter.limit("5 per minute")
def refresh_all_subscriptions() -> Response:
    """Refresh every subscription."""
    return jsonify({"results": source_store.refresh_all_subscriptions()})


@main_bp.route("/api/subscriptions/<subscription_id>/refresh", methods=["POST"])
@limiter.limit("10 per minute")
def refresh_subscription(subscription_id: str) -> Response:
    """Refresh one subscription."""
    return jsonify(source_store.refresh_subscription(subscription_id))


@main_bp.route("/api/subscriptions/<subscription_id>", methods=["DELETE"])
def delete_subscription(subscription_id: str) -> Response:
    """Remove a subscription.

    Query Params:
        keep_sources (str): If "1"/"true", the imported sources are kept.
    """
    keep_sources = request.args.get("keep_sources", "").lower() in ("1", "true", "yes", "on")
    removed = source_store.remove_subscription(subscription_id, keep_sources=keep_sources)
    return jsonify({"message": "Subscription removed.", "removed_sources": removed})
