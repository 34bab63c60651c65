# File: audiobook_sources/config.py
"""Configuration module."""

import logging
import os

from audiobook_sources.constants import DEFAULT_PAGE_SIZE, DEFAULT_TIMEOUT_SECONDS


def _parse_env_int(key: str, default: int) -> int:
    """Parse an integer environment variable safely.

    Handles cases where values might be passed as float strings (e.g., "3.0")
    by container orchestrators.

    Args:
        key: The environment variable key.
        default: The default value if missing or invalid.

    Returns:
        int: The parsed integer.
    """
    raw = os.getenv(key)
    if raw is None:
        return default
    try:
        return int(float(raw.strip()))
    except (ValueError, TypeError):
        return default


def _parse_env_float(key: str, default: float) -> float:
    """Parse a float environment variable safely, falling back to the default."""
    raw = os.getenv(key)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except (ValueError, TypeError):
        return default


def _parse_env_bool(key: str, default: bool = False) -> bool:
    """Parse a boolean environment variable safely.

    Supports '1', 'true', 'yes', 'on' (case-insensitive) as True.

    Args:
        key: The environment variable key.
        default: The default value if missing.

    Returns:
        bool: The parsed boolean.
    """
    val = os.getenv(key)
    if val is None:
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Centralized configuration for the Flask application.

    Loads settings from environment variables with safe defaults.
    """

    # Core Flask Config
    # nosec B105: Default key is intentional for development; validation logic handles warning user.
    SECRET_KEY: str = os.getenv("SECRET_KEY", "change-this-to-a-secure-random-key")
    FLASK_DEBUG: bool = _parse_env_bool("FLASK_DEBUG", False)
    TESTING: bool = _parse_env_bool("TESTING", False)

    LISTEN_HOST: str = os.getenv("LISTEN_HOST", "0.0.0.0")  # nosec B104
    LISTEN_PORT: int = _parse_env_int("LISTEN_PORT", 5078)

    # Persistence of the source collection (optional).
    # When unset, sources live in memory for the lifetime of the process.
    SOURCES_FILE: str | None = os.getenv("SOURCES_FILE")

    # Logging
    # We allow LOG_LEVEL to be None if unset to support Gunicorn level inheritance in __init__.py.
    _log_level_env: str | None = os.getenv("LOG_LEVEL")
    LOG_LEVEL_STR: str = _log_level_env.upper() if _log_level_env else "INFO"
    LOG_LEVEL: int | None = getattr(logging, LOG_LEVEL_STR, logging.INFO) if _log_level_env else None

    # Scraper Concurrency
    # Size of the shared executor and of the global fetch semaphore.
    SCRAPER_THREADS: int = _parse_env_int("SCRAPER_THREADS", 3)

    # Scraper Request Timeout
    SCRAPER_TIMEOUT: int = _parse_env_int("SCRAPER_TIMEOUT", DEFAULT_TIMEOUT_SECONDS)

    # Transport-level retries for idempotent requests (GET/HEAD). Orchestrators never retry.
    SCRAPER_RETRIES: int = _parse_env_int("SCRAPER_RETRIES", 2)

    # Optional random delay (seconds) before each outgoing request. 0 disables it.
    SCRAPER_JITTER_MAX: float = _parse_env_float("SCRAPER_JITTER_MAX", 0.0)

    # Fetched-page cache
    FETCH_CACHE_TTL: int = _parse_env_int("FETCH_CACHE_TTL", 300)
    FETCH_CACHE_SIZE: int = _parse_env_int("FETCH_CACHE_SIZE", 100)

    # Value substituted for {{pageSize}} placeholders
    SEARCH_PAGE_SIZE: int = _parse_env_int("SEARCH_PAGE_SIZE", DEFAULT_PAGE_SIZE)

    # Only import Legado audiobook sources (bookSourceType == 1) from subscriptions
    IMPORT_AUDIO_ONLY: bool = _parse_env_bool("IMPORT_AUDIO_ONLY", True)

    @classmethod
    def validate(cls, logger: logging.Logger) -> None:
        """Validate critical configuration at startup."""
        if cls.SECRET_KEY == "change-this-to-a-secure-random-key":  # noqa: S105
            if cls.FLASK_DEBUG or cls.TESTING:
                logger.warning(
                    "WARNING: You are using the default insecure SECRET_KEY. "
                    "This is acceptable for development/testing but UNSAFE for production."
                )
            else:
                logger.critical(
                    "CRITICAL SECURITY ERROR: You are running in PRODUCTION with the default insecure SECRET_KEY."
                )
                raise ValueError(
                    "Application refused to start: Change SECRET_KEY in your .env file for production deployment."
                )

        # Only validate if the user actually tried to set it
        if cls._log_level_env and not hasattr(logging, cls.LOG_LEVEL_STR):
            logger.warning(
                f"Configuration Warning: Invalid LOG_LEVEL '{cls.LOG_LEVEL_STR}' provided. Defaulting to INFO."
            )

        if cls.SCRAPER_THREADS < 1:
            logger.warning(f"Invalid SCRAPER_THREADS '{cls.SCRAPER_THREADS}'. Resetting to 3.")
            cls.SCRAPER_THREADS = 3

        if cls.SCRAPER_TIMEOUT < 1:
            logger.warning(f"Invalid SCRAPER_TIMEOUT '{cls.SCRAPER_TIMEOUT}'. Resetting to {DEFAULT_TIMEOUT_SECONDS}.")
            cls.SCRAPER_TIMEOUT = DEFAULT_TIMEOUT_SECONDS

        if cls.SCRAPER_RETRIES < 0:
            logger.warning(f"Invalid SCRAPER_RETRIES '{cls.SCRAPER_RETRIES}'. Resetting to 0.")
            cls.SCRAPER_RETRIES = 0

        if cls.SEARCH_PAGE_SIZE < 1:
            logger.warning(f"Invalid SEARCH_PAGE_SIZE '{cls.SEARCH_PAGE_SIZE}'. Resetting to {DEFAULT_PAGE_SIZE}.")
            cls.SEARCH_PAGE_SIZE = DEFAULT_PAGE_SIZE

        if cls.SOURCES_FILE:
            logger.info(f"Book sources will be persisted to: {cls.SOURCES_FILE}")
        else:
            logger.info("SOURCES_FILE not set. Book sources are kept in memory only.")
