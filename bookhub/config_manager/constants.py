"""Shared constants for the configuration manager package."""
from __future__ import annotations

from pathlib import Path

MODULE_DIR = Path(__file__).resolve().parent
SCRIPT_DIR = MODULE_DIR.parent.parent.resolve()
CONF_DIR = SCRIPT_DIR / "conf"
DEFAULT_CONFIG_PATH = CONF_DIR / "config.json"
DEFAULT_LOCAL_CONFIG_PATH = CONF_DIR / "config.local.json"

DEFAULT_CACHE_DIR = Path("storage") / "book_cache"
DEFAULT_CACHE_TTL_HOURS = 24 * 7

DEFAULT_GOOGLE_BOOKS_URL = "https://www.googleapis.com/books/v1"
DEFAULT_OPENLIBRARY_URL = "https://openlibrary.org"
DEFAULT_NYT_URL = "https://api.nytimes.com/svc/books/v3"

DEFAULT_PROVIDER_TIMEOUT_SECONDS = 10.0
DEFAULT_TIER_TIMEOUT_SECONDS = 2.0
DEFAULT_INFLIGHT_TIMEOUT_SECONDS = 30.0

DEFAULT_REDIS_NAMESPACE = "bookhub:cache"
DEFAULT_S3_PREFIX = "books/v1/"

DEFAULT_EMBEDDING_DIMENSION = 384
DEFAULT_RECENTLY_VIEWED_CAPACITY = 10
DEFAULT_SEARCH_RESULT_LIMIT = 40
MAX_CACHED_RECOMMENDATIONS = 20

SENSITIVE_CONFIG_KEYS = {
    "google_books_api_key",
    "nyt_api_key",
    "database_url",
    "redis_url",
    "embedding_api_key",
}

__all__ = [
    "CONF_DIR",
    "DEFAULT_CACHE_DIR",
    "DEFAULT_CACHE_TTL_HOURS",
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_EMBEDDING_DIMENSION",
    "DEFAULT_GOOGLE_BOOKS_URL",
    "DEFAULT_INFLIGHT_TIMEOUT_SECONDS",
    "DEFAULT_LOCAL_CONFIG_PATH",
    "DEFAULT_NYT_URL",
    "DEFAULT_OPENLIBRARY_URL",
    "DEFAULT_PROVIDER_TIMEOUT_SECONDS",
    "DEFAULT_RECENTLY_VIEWED_CAPACITY",
    "DEFAULT_REDIS_NAMESPACE",
    "DEFAULT_S3_PREFIX",
    "DEFAULT_SEARCH_RESULT_LIMIT",
    "DEFAULT_TIER_TIMEOUT_SECONDS",
    "MAX_CACHED_RECOMMENDATIONS",
    "MODULE_DIR",
    "SCRIPT_DIR",
    "SENSITIVE_CONFIG_KEYS",
]
