# File: tests/conftest.py
"""Global pytest fixtures and configuration for the test suite.

This module defines the 'World' in which tests run, including the Flask application
instance, test clients, and global configuration overrides.
"""

from __future__ import annotations

from collections.abc import Generator

import pytest
from flask import Flask
from flask.testing import FlaskClient, FlaskCliRunner

from audiobook_sources import create_app
from audiobook_sources.config import Config
from audiobook_sources.engine.extractor import reset_warnings
from audiobook_sources.extensions import page_fetcher


class TestConfig(Config):
    """Test configuration with overrides.

    Passed to create_app to ensure extensions (like Flask-Limiter)
    pick up settings during their init_app() phase.
    """

    TESTING = True
    SECRET_KEY = "test-secret-key"
    WTF_CSRF_ENABLED = False

    # Enable Rate Limit headers for assertions
    RATELIMIT_HEADERS_ENABLED = True
    RATELIMIT_ENABLED = True

    # In-memory collection, no request jitter
    SOURCES_FILE = None
    SCRAPER_JITTER_MAX = 0.0
    SCRAPER_RETRIES = 0


@pytest.fixture
def app() -> Generator[Flask]:
    """Create the 'World' for the tests: A Flask application instance.

    Uses TestConfig to ensure configuration is present before extension initialization.
    """
    app = create_app(TestConfig)
    yield app


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    """The observer within the world: A test client to make requests."""
    return app.test_client()


@pytest.fixture
def runner(app: Flask) -> FlaskCliRunner:
    """A CLI runner for command-line context."""
    return app.test_cli_runner()


@pytest.fixture(autouse=True)
def push_app_context(app: Flask) -> Generator[None]:
    """Automatically push application context for all tests."""
    with app.app_context():
        yield


@pytest.fixture(autouse=True)
def reset_engine_state() -> Generator[None]:
    """Clear the fetch cache and the unsupported-rule registry around every test."""
    page_fetcher.clear_cache()
    reset_warnings()
    yield
    page_fetcher.clear_cache()
    reset_warnings()
