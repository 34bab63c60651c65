# audiobook_sources/constants.py
"""Application constants and configuration defaults."""

from typing import Final

# --- Source Constants ---
SOURCE_TYPE: Final[str] = "thirdparty"
DEFAULT_GROUP: Final[str] = "Ungrouped"
UNKNOWN_SOURCE_NAME: Final[str] = "Unknown source"

# Legado marks audiobook sources with bookSourceType == 1.
LEGADO_AUDIO_SOURCE_TYPE: Final[int] = 1

# --- Search Configuration ---
DEFAULT_PAGE_SIZE: Final[int] = 20
MIN_SEARCH_QUERY_LENGTH: Final[int] = 1

# --- Rule Defaults ---
DEFAULT_CHAPTER_NAME_RULE: Final[str] = "@text"
DEFAULT_CHAPTER_URL_RULE: Final[str] = "@href"
FALLBACK_CHAPTER_URL_RULE: Final[str] = "a@href"

# Attributes whose values are URLs and get resolved against the page URL.
URL_ATTRIBUTES: Final[frozenset[str]] = frozenset({"href", "src"})

# --- Audio Heuristics ---
AUDIO_EXTENSIONS: Final[tuple[str, ...]] = (".mp3", ".m4a", ".aac", ".wav", ".ogg")
# Order matters: the first element that yields a src wins.
AUDIO_ELEMENT_SELECTOR: Final[str] = 'audio source, audio[src], source[type*="audio"]'

# --- Network Constants ---
DEFAULT_TIMEOUT_SECONDS: Final[int] = 30

# A curated list of diverse, modern User-Agents to rotate through to avoid bot detection.
USER_AGENTS: Final[list[str]] = [
    # Desktop Chrome (Windows, Mac, Linux)
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    # Desktop Firefox
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:124.0) Gecko/20100101 Firefox/124.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14.4; rv:124.0) Gecko/20100101 Firefox/124.0",
    # Desktop Edge, Safari
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36 Edg/123.0.2420.81",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4_1) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4.1 Safari/605.1.15",
    # Mobile (iOS, Android). Many audiobook sites only serve their mobile layout.
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4 Mobile/15E148 Safari/604.1",
    "Mozilla/5.0 (Linux; Android 14; Pixel 7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Mobile Safari/537.36",
]

# --- Subscriptions ---
# Remote lists of book sources offered to the user as one-click subscriptions.
PRESET_SUBSCRIPTIONS: Final[list[dict[str, str | bool]]] = [
    {
        "name": "Legado full source list",
        "url": "https://legado.aoaostar.com/sources/b778fe6b.json",
        "description": "Legado 3.0 community sources (65+ audiobook sources among 3900+)",
        "is_default": True,
    },
    {
        "name": "Audiobook source collection",
        "url": "https://www.lifves.com/api/v2/booksource/list/group/有声",
        "description": "Audiobook sources from the open reading community (about 30)",
        "is_default": False,
    },
]
