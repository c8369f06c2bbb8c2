"""Core type definitions for the book lookup pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple


class MetadataSource(str, Enum):
    """Book data provider identifiers."""

    GOOGLE_BOOKS = "google_books"
    OPENLIBRARY = "openlibrary"
    NYT = "nyt"
    UNKNOWN = "unknown"


class LookupState(str, Enum):
    """Lifecycle of a single cache-key resolution."""

    UNRESOLVED = "unresolved"
    DEDUPLICATING = "deduplicating"
    TIER_CHECK = "tier_check"
    RESOLVED = "resolved"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True, slots=True)
class Dimensions:
    """Physical measurements kept as provider strings (e.g. ``"24.00 cm"``)."""

    height: Optional[str] = None
    width: Optional[str] = None
    thickness: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.height or self.width or self.thickness)

    def to_dict(self) -> Dict[str, Any]:
        return {"height": self.height, "width": self.width, "thickness": self.thickness}

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional["Dimensions"]:
        if not data:
            return None
        dimensions = cls(
            height=data.get("height"), width=data.get("width"), thickness=data.get("thickness")
        )
        return None if dimensions.is_empty() else dimensions


@dataclass(frozen=True, slots=True)
class ExternalIdentifiers:
    """Source-specific identifiers, links, ratings and sale information."""

    source: MetadataSource
    external_id: Optional[str] = None
    info_link: Optional[str] = None
    preview_link: Optional[str] = None
    purchase_link: Optional[str] = None
    average_rating: Optional[float] = None
    ratings_count: Optional[int] = None
    pdf_available: Optional[bool] = None
    epub_available: Optional[bool] = None
    list_price: Optional[float] = None
    currency_code: Optional[str] = None
    image_links: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source.value,
            "external_id": self.external_id,
            "info_link": self.info_link,
            "preview_link": self.preview_link,
            "purchase_link": self.purchase_link,
            "average_rating": self.average_rating,
            "ratings_count": self.ratings_count,
            "pdf_available": self.pdf_available,
            "epub_available": self.epub_available,
            "list_price": self.list_price,
            "currency_code": self.currency_code,
            "image_links": dict(self.image_links),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExternalIdentifiers":
        try:
            source = MetadataSource(data.get("source"))
        except ValueError:
            source = MetadataSource.UNKNOWN
        return cls(
            source=source,
            external_id=data.get("external_id"),
            info_link=data.get("info_link"),
            preview_link=data.get("preview_link"),
            purchase_link=data.get("purchase_link"),
            average_rating=data.get("average_rating"),
            ratings_count=data.get("ratings_count"),
            pdf_available=data.get("pdf_available"),
            epub_available=data.get("epub_available"),
            list_price=data.get("list_price"),
            currency_code=data.get("currency_code"),
            image_links=dict(data.get("image_links") or {}),
        )


@dataclass(frozen=True, slots=True)
class NormalizedBookAggregate:
    """Provider-agnostic record produced by a source mapper.

    Instances are built once per provider response and never mutated;
    ``authors`` keeps first-seen order while ``categories`` has set
    semantics (see :attr:`category_set`). ``industry_identifiers`` keeps
    every ``(type, value)`` ISBN pair the provider listed.
    """

    title: str
    identifiers: ExternalIdentifiers
    subtitle: Optional[str] = None
    description: Optional[str] = None
    authors: Tuple[str, ...] = ()
    categories: Tuple[str, ...] = ()
    isbn10: Optional[str] = None
    isbn13: Optional[str] = None
    industry_identifiers: Tuple[Tuple[str, str], ...] = ()
    publisher: Optional[str] = None
    published_date: Optional[date] = None
    page_count: Optional[int] = None
    language: Optional[str] = None
    dimensions: Optional[Dimensions] = None
    slug_base: str = ""
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def source(self) -> MetadataSource:
        return self.identifiers.source

    @property
    def category_set(self) -> frozenset[str]:
        return frozenset(category.casefold() for category in self.categories)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value)
    else:
        return _utcnow()
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(slots=True)
class CacheEntry:
    """A cached payload plus the bookkeeping every tier keeps for it."""

    payload: Any
    created_at: datetime = field(default_factory=_utcnow)
    last_accessed_at: datetime = field(default_factory=_utcnow)
    access_count: int = 0
    embedding: Optional[List[float]] = None
    embedding_is_placeholder: bool = False

    @classmethod
    def fresh(
        cls,
        payload: Any,
        *,
        embedding: Optional[Sequence[float]] = None,
        embedding_is_placeholder: bool = False,
    ) -> "CacheEntry":
        return cls(
            payload=payload,
            embedding=list(embedding) if embedding is not None else None,
            embedding_is_placeholder=embedding_is_placeholder,
        )

    def touch(self) -> "CacheEntry":
        """Record an access and return ``self``."""
        self.last_accessed_at = _utcnow()
        self.access_count += 1
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payload": self.payload,
            "created_at": self.created_at.isoformat(),
            "last_accessed_at": self.last_accessed_at.isoformat(),
            "access_count": self.access_count,
            "embedding": self.embedding,
            "embedding_is_placeholder": self.embedding_is_placeholder,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CacheEntry":
        if not isinstance(data, Mapping) or "payload" not in data:
            raise ValueError("cache entry is missing its payload")
        embedding = data.get("embedding")
        return cls(
            payload=data["payload"],
            created_at=_parse_timestamp(data.get("created_at")),
            last_accessed_at=_parse_timestamp(data.get("last_accessed_at")),
            access_count=int(data.get("access_count") or 0),
            embedding=[float(value) for value in embedding] if embedding else None,
            embedding_is_placeholder=bool(data.get("embedding_is_placeholder", False)),
        )


__all__ = [
    "CacheEntry",
    "Dimensions",
    "ExternalIdentifiers",
    "LookupState",
    "MetadataSource",
    "NormalizedBookAggregate",
]
