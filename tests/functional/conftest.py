# File: tests/functional/conftest.py
"""Fixtures specific to Functional (Integration) tests."""

from collections.abc import Generator
from unittest.mock import MagicMock, patch

import pytest
from flask import Flask

from audiobook_sources.engine.network import PageFetcher
from audiobook_sources.extensions import limiter


@pytest.fixture(autouse=True)
def mock_fetcher() -> Generator[MagicMock]:
    """Replace the shared page fetcher for all functional tests.

    Functional tests exercise the full application stack (via test_client),
    so searches, chapter lists and subscriptions would otherwise reach real sites.
    """
    fetcher = MagicMock(spec=PageFetcher)
    with patch("audiobook_sources.extensions.page_fetcher", fetcher):
        yield fetcher


@pytest.fixture(autouse=True)
def reset_limiter(app: Flask) -> None:
    """Start every test with fresh rate-limit counters."""
    limiter.reset()
