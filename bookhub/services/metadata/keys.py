"""Cache key derivation shared by the deduplicator and every tier.

All functions are pure: the same inputs always give the same key, and the
same function builds the key for reads and for writes.
"""

from __future__ import annotations

import hashlib
import re
from typing import List, Optional

from .errors import ValidationError
from .text import isbn10_to_isbn13, validate_isbn

_WHITESPACE = re.compile(r"\s+")
_QUALIFIER = re.compile(r"^[a-z_]+:.+$")
_UNSAFE_PATH_CHARS = re.compile(r"[^a-zA-Z0-9\-_]")

ANY_LANGUAGE = "any"


def normalize_query(query: str) -> str:
    """Lowercase, collapse whitespace and put ``field:value`` tokens first.

    Qualifier tokens (``inauthor:herbert``) are sorted so their order does
    not matter; free-text tokens keep their order.
    """
    tokens = _WHITESPACE.split(query.strip().lower()) if query else []
    tokens = [token for token in tokens if token]
    qualifiers = sorted(token for token in tokens if _QUALIFIER.match(token))
    free_text = [token for token in tokens if not _QUALIFIER.match(token)]
    return " ".join(qualifiers + free_text)


def normalize_language(language: Optional[str]) -> str:
    if language is None:
        return ANY_LANGUAGE
    cleaned = language.strip().lower()
    return cleaned or ANY_LANGUAGE


def search_cache_key(query: str, language: Optional[str] = None) -> str:
    """Key for a search result list; raises :class:`ValidationError` for blank queries."""
    normalized = normalize_query(query or "")
    if not normalized:
        raise ValidationError("Search query must not be blank")
    return f"search:{normalize_language(language)}:{normalized}"


def search_page_key(query: str, language: Optional[str], page: int) -> str:
    """Key for one fixed-size page of provider results for a query."""
    return f"{search_cache_key(query, language)}#page={page}"


def book_cache_key(book_id: str) -> str:
    return f"book:{book_id.strip()}"


def isbn_cache_key(isbn: str) -> str:
    """Key for an ISBN lookup; ISBN-10 and its ISBN-13 form share a key."""
    normalized = validate_isbn(isbn)
    if len(normalized) == 10:
        normalized = isbn10_to_isbn13(normalized)
    return f"isbn:{normalized}"


def safe_key_name(key: str, max_length: int = 120) -> str:
    """File/object name for ``key``: sanitized text plus a short digest."""
    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:12]
    sanitized = _UNSAFE_PATH_CHARS.sub("_", key)[:max_length]
    return f"{sanitized}-{digest}"


def key_namespace(key: str) -> str:
    namespace, _, _ = key.partition(":")
    return namespace or "misc"


def object_path(key: str, prefix: str) -> str:
    """Object-storage path for ``key`` below ``prefix`` (e.g. ``books/v1/``)."""
    parts: List[str] = [prefix.rstrip("/")] if prefix.strip("/") else []
    parts.extend([key_namespace(key), f"{safe_key_name(key)}.json"])
    return "/".join(parts)


__all__ = [
    "ANY_LANGUAGE",
    "book_cache_key",
    "isbn_cache_key",
    "key_namespace",
    "normalize_language",
    "normalize_query",
    "object_path",
    "safe_key_name",
    "search_cache_key",
    "search_page_key",
]
