"""String, date, ISBN and URL sanitation shared by the source mappers."""

from __future__ import annotations

import re
import unicodedata
from datetime import date, datetime
from typing import Any, Iterable, List, Optional, Sequence
from urllib.parse import urlsplit, urlunsplit

from .errors import ValidationError

# Hosts whose image links are served over https when requested that way.
SECURE_IMAGE_HOSTS = (
    "books.google.com",
    "books.googleusercontent.com",
    "covers.openlibrary.org",
    "openlibrary.org",
)

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m",
    "%Y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%d %B %Y",
    "%d %b %Y",
    "%B %Y",
    "%b %Y",
    "%Y/%m/%d",
)

_SLUG_TOKEN = re.compile(r"[a-z0-9]+")
_ISBN_CHARS = re.compile(r"[^0-9Xx]")


def strip_enclosing_quotes(value: str) -> str:
    """Remove exactly one pair of surrounding double quotes, if both exist.

    Interior quotes are preserved: ``'"Simon "The Great" & Schuster"'``
    becomes ``'Simon "The Great" & Schuster'``.
    """
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return value[1:-1]
    return value


def clean_text(value: Any) -> Optional[str]:
    """Return a stripped string, or ``None`` for non-strings and blanks."""
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    return cleaned or None


def clean_quoted_text(value: Any) -> Optional[str]:
    """Like :func:`clean_text` but also strips one pair of enclosing quotes."""
    cleaned = clean_text(value)
    if cleaned is None:
        return None
    return strip_enclosing_quotes(cleaned) or None


def unique_strings(values: Iterable[Any]) -> List[str]:
    """Trim and de-duplicate (case-insensitively) while keeping first-seen order."""
    seen: set[str] = set()
    result: List[str] = []
    for value in values:
        cleaned = clean_text(value)
        if cleaned is None:
            continue
        marker = cleaned.casefold()
        if marker in seen:
            continue
        seen.add(marker)
        result.append(cleaned)
    return result


def parse_published_date(value: Any) -> Optional[date]:
    """Parse the partial and free-form dates providers return.

    Partial dates resolve to the first day of the period (``"2005"`` is
    2005-01-01). Unparseable values yield ``None``.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = clean_text(value)
    if text is None:
        return None
    text = text.split("T", 1)[0] if re.match(r"^\d{4}-\d{2}-\d{2}T", text) else text
    for pattern in _DATE_FORMATS:
        try:
            return datetime.strptime(text, pattern).date()
        except ValueError:
            continue
    match = re.search(r"\b(1[5-9]\d{2}|20\d{2})\b", text)
    if match:
        return date(int(match.group(1)), 1, 1)
    return None


def coerce_positive_int(value: Any) -> Optional[int]:
    """Return a positive integer from ints or digit strings; ``None`` otherwise."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, float) and value.is_integer():
        return int(value) if value > 0 else None
    if isinstance(value, str):
        text = value.strip()
        if text.lstrip("+-").isdigit():
            number = int(text)
            return number if number > 0 else None
    return None


def slug_tokens(value: Optional[str]) -> List[str]:
    if not value:
        return []
    decomposed = unicodedata.normalize("NFKD", value)
    ascii_only = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _SLUG_TOKEN.findall(ascii_only.lower())


def build_slug_base(title: Optional[str], authors: Sequence[str]) -> str:
    """Hyphen-join the title tokens and the first author's tokens."""
    tokens = slug_tokens(title)
    if authors:
        tokens.extend(slug_tokens(authors[0]))
    return "-".join(tokens)


def is_secure_image_host(host: str) -> bool:
    host = host.lower()
    return any(host == known or host.endswith("." + known) for known in SECURE_IMAGE_HOSTS)


def upgrade_image_url(url: Any) -> Optional[str]:
    """Rewrite ``http://`` to ``https://`` for known provider image hosts."""
    text = clean_text(url)
    if text is None:
        return None
    parts = urlsplit(text)
    if parts.scheme.lower() == "http" and parts.hostname and is_secure_image_host(parts.hostname):
        return urlunsplit(parts._replace(scheme="https"))
    return text


def normalize_isbn(value: Any) -> Optional[str]:
    """Strip hyphens and spaces; uppercase a trailing ``x``."""
    text = clean_text(value)
    if text is None:
        return None
    cleaned = _ISBN_CHARS.sub("", text).upper()
    return cleaned or None


def is_valid_isbn10(value: str) -> bool:
    if not re.fullmatch(r"\d{9}[\dX]", value):
        return False
    total = 0
    for index, char in enumerate(value):
        digit = 10 if char == "X" else int(char)
        total += (10 - index) * digit
    return total % 11 == 0


def is_valid_isbn13(value: str) -> bool:
    if not re.fullmatch(r"\d{13}", value):
        return False
    total = sum(int(char) * (1 if index % 2 == 0 else 3) for index, char in enumerate(value))
    return total % 10 == 0


def isbn10_to_isbn13(value: str) -> str:
    core = "978" + value[:9]
    total = sum(int(char) * (1 if index % 2 == 0 else 3) for index, char in enumerate(core))
    return core + str((10 - total % 10) % 10)


def validate_isbn(value: Any) -> str:
    """Return the normalized ISBN or raise :class:`ValidationError`.

    Both the length and the checksum are verified.
    """
    normalized = normalize_isbn(value)
    if normalized is None:
        raise ValidationError("ISBN must not be empty")
    if len(normalized) == 10:
        if is_valid_isbn10(normalized):
            return normalized
        raise ValidationError(f"Invalid ISBN-10 checksum: {value!r}")
    if len(normalized) == 13:
        if is_valid_isbn13(normalized):
            return normalized
        raise ValidationError(f"Invalid ISBN-13 checksum: {value!r}")
    raise ValidationError(f"ISBN must have 10 or 13 characters: {value!r}")


def looks_like_isbn(value: Any) -> bool:
    normalized = normalize_isbn(value)
    if normalized is None:
        return False
    return is_valid_isbn10(normalized) or is_valid_isbn13(normalized)


__all__ = [
    "SECURE_IMAGE_HOSTS",
    "build_slug_base",
    "clean_quoted_text",
    "clean_text",
    "coerce_positive_int",
    "is_secure_image_host",
    "is_valid_isbn10",
    "is_valid_isbn13",
    "isbn10_to_isbn13",
    "looks_like_isbn",
    "normalize_isbn",
    "parse_published_date",
    "slug_tokens",
    "strip_enclosing_quotes",
    "unique_strings",
    "upgrade_image_url",
    "validate_isbn",
]
