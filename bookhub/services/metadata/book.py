"""Canonical ``Book`` entity and its cover, qualifier and edition value types."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union
from urllib.parse import urlsplit

from bookhub.config_manager import MAX_CACHED_RECOMMENDATIONS

from .text import parse_published_date
from .types import Dimensions, ExternalIdentifiers, MetadataSource, NormalizedBookAggregate

_BOOK_NAMESPACE = uuid.UUID("6f1c7c1e-0d5b-4c55-9d43-3f1b8e2f5a10")

INTERNAL_COVER_HOST_MARKERS = ("s3.amazonaws.com", ".digitaloceanspaces.com")

# Largest first; the first present tier becomes the cover.
IMAGE_TIER_PREFERENCE = (
    "extraLarge",
    "large",
    "medium",
    "small",
    "thumbnail",
    "smallThumbnail",
)


@dataclass(frozen=True, slots=True)
class InternalCover:
    """Cover stored in our own object storage, addressed by key or URL."""

    path: str


@dataclass(frozen=True, slots=True)
class ExternalCover:
    """Cover hot-linked from a third-party host."""

    url: str


CoverLocation = Union[InternalCover, ExternalCover]


def classify_cover(value: Optional[str]) -> Optional[CoverLocation]:
    """Decide whether a cover reference is internally or externally hosted.

    Object-storage hosts and scheme-less paths are internal; any other
    ``http(s)`` URL is external. Blank values classify to ``None``.
    """
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    lowered = text.lower()
    if any(marker in lowered for marker in INTERNAL_COVER_HOST_MARKERS):
        return InternalCover(text)
    scheme = urlsplit(text).scheme.lower()
    if scheme in {"http", "https"}:
        return ExternalCover(text)
    return InternalCover(text)


class QualifierKind(str, Enum):
    """Known qualifier tags a book can carry."""

    NYT_BESTSELLER = "nyt_bestseller"
    RECENTLY_VIEWED = "recently_viewed"
    RECOMMENDED = "recommended"


@dataclass(frozen=True, slots=True)
class Qualifier:
    kind: QualifierKind
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "payload": dict(self.payload)}


@dataclass(frozen=True, slots=True)
class CollectionAssignment:
    """Weak reference from a book to a named collection (e.g. a NYT list)."""

    collection_id: str
    name: Optional[str] = None
    collection_type: Optional[str] = None
    rank: Optional[int] = None
    source: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "collection_id": self.collection_id,
            "name": self.name,
            "collection_type": self.collection_type,
            "rank": self.rank,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CollectionAssignment":
        return cls(
            collection_id=str(data["collection_id"]),
            name=data.get("name"),
            collection_type=data.get("collection_type"),
            rank=data.get("rank"),
            source=data.get("source"),
        )


@dataclass(frozen=True, slots=True)
class EditionInfo:
    """A sibling printing or format of the same logical work."""

    book_id: str
    external_id: Optional[str] = None
    edition_type: Optional[str] = None
    isbn10: Optional[str] = None
    isbn13: Optional[str] = None
    published_date: Optional[date] = None
    cover_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "book_id": self.book_id,
            "external_id": self.external_id,
            "edition_type": self.edition_type,
            "isbn10": self.isbn10,
            "isbn13": self.isbn13,
            "published_date": self.published_date.isoformat() if self.published_date else None,
            "cover_url": self.cover_url,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EditionInfo":
        return cls(
            book_id=str(data["book_id"]),
            external_id=data.get("external_id"),
            edition_type=data.get("edition_type"),
            isbn10=data.get("isbn10"),
            isbn13=data.get("isbn13"),
            published_date=parse_published_date(data.get("published_date")),
            cover_url=data.get("cover_url"),
        )


def canonical_book_id(source: MetadataSource, external_id: str) -> str:
    """Stable identifier derived from the first provider that described the book."""
    return str(uuid.uuid5(_BOOK_NAMESPACE, f"{source.value}:{external_id}"))


@dataclass(eq=False)
class Book:
    """Canonical book entity shared by callers and every cache tier.

    Equality and hashing use ``id`` only: two instances with the same id
    are the same book whatever their other fields hold.
    """

    id: str
    title: str
    slug: Optional[str] = None
    subtitle: Optional[str] = None
    authors: List[str] = field(default_factory=list)
    description: Optional[str] = None
    publisher: Optional[str] = None
    published_date: Optional[date] = None
    isbn10: Optional[str] = None
    isbn13: Optional[str] = None
    page_count: Optional[int] = None
    language: Optional[str] = None
    categories: List[str] = field(default_factory=list)
    average_rating: Optional[float] = None
    ratings_count: Optional[int] = None
    dimensions: Optional[Dimensions] = None
    internal_cover_path: Optional[str] = None
    external_cover_url: Optional[str] = None
    image_links: Dict[str, str] = field(default_factory=dict)
    external_identifiers: List[ExternalIdentifiers] = field(default_factory=list)
    collections: List[CollectionAssignment] = field(default_factory=list)
    qualifiers: Dict[QualifierKind, Qualifier] = field(default_factory=dict)
    extra_qualifiers: Dict[str, Any] = field(default_factory=dict)
    other_editions: List[EditionInfo] = field(default_factory=list)
    cached_recommendation_ids: List[str] = field(default_factory=list)
    contributing_sources: List[MetadataSource] = field(default_factory=list)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Book):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    @property
    def cover(self) -> Optional[CoverLocation]:
        if self.internal_cover_path:
            return InternalCover(self.internal_cover_path)
        if self.external_cover_url:
            return ExternalCover(self.external_cover_url)
        return None

    @property
    def cover_url(self) -> Optional[str]:
        return self.internal_cover_path or self.external_cover_url

    def set_cover(self, value: Optional[str]) -> Optional[CoverLocation]:
        """Route a cover reference to the matching field; ``None`` never clears."""
        location = classify_cover(value)
        if isinstance(location, InternalCover):
            self.internal_cover_path = location.path
        elif isinstance(location, ExternalCover):
            self.external_cover_url = location.url
        return location

    def external_id_for(self, source: MetadataSource) -> Optional[str]:
        for identifiers in self.external_identifiers:
            if identifiers.source == source and identifiers.external_id:
                return identifiers.external_id
        return None

    def add_qualifier(self, qualifier: Qualifier) -> None:
        self.qualifiers[qualifier.kind] = qualifier

    def add_collection(self, assignment: CollectionAssignment) -> None:
        self.collections = [
            existing
            for existing in self.collections
            if existing.collection_id != assignment.collection_id
        ]
        self.collections.append(assignment)

    def add_recommendation_ids(self, ids: Iterable[str]) -> None:
        """Prepend new ids, de-duplicated, keeping at most the configured maximum."""
        merged: List[str] = []
        for candidate in list(ids) + self.cached_recommendation_ids:
            if candidate and candidate != self.id and candidate not in merged:
                merged.append(candidate)
        self.cached_recommendation_ids = merged[:MAX_CACHED_RECOMMENDATIONS]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "slug": self.slug,
            "subtitle": self.subtitle,
            "authors": list(self.authors),
            "description": self.description,
            "publisher": self.publisher,
            "published_date": self.published_date.isoformat() if self.published_date else None,
            "isbn10": self.isbn10,
            "isbn13": self.isbn13,
            "page_count": self.page_count,
            "language": self.language,
            "categories": list(self.categories),
            "average_rating": self.average_rating,
            "ratings_count": self.ratings_count,
            "dimensions": self.dimensions.to_dict() if self.dimensions else None,
            "internal_cover_path": self.internal_cover_path,
            "external_cover_url": self.external_cover_url,
            "image_links": dict(self.image_links),
            "external_identifiers": [item.to_dict() for item in self.external_identifiers],
            "collections": [item.to_dict() for item in self.collections],
            "qualifiers": [item.to_dict() for item in self.qualifiers.values()],
            "extra_qualifiers": dict(self.extra_qualifiers),
            "other_editions": [item.to_dict() for item in self.other_editions],
            "cached_recommendation_ids": list(self.cached_recommendation_ids),
            "contributing_sources": [source.value for source in self.contributing_sources],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Book":
        """Rebuild a book from :meth:`to_dict` output.

        Raises ``KeyError``/``ValueError``/``TypeError`` for payloads that are
        not book projections; tiers report those as malformed entries.
        """
        if not isinstance(data, Mapping):
            raise TypeError("book payload must be a mapping")
        book_id = str(data["id"]).strip()
        if not book_id:
            raise ValueError("book payload has an empty id")

        qualifiers: Dict[QualifierKind, Qualifier] = {}
        extra_qualifiers: Dict[str, Any] = dict(data.get("extra_qualifiers") or {})
        for item in data.get("qualifiers") or []:
            try:
                kind = QualifierKind(item.get("kind"))
            except ValueError:
                extra_qualifiers[str(item.get("kind"))] = item.get("payload")
                continue
            qualifiers[kind] = Qualifier(kind, dict(item.get("payload") or {}))

        bestseller = _bestseller_qualifier(data)
        if bestseller is not None and QualifierKind.NYT_BESTSELLER not in qualifiers:
            qualifiers[QualifierKind.NYT_BESTSELLER] = bestseller

        sources: List[MetadataSource] = []
        for value in data.get("contributing_sources") or []:
            try:
                sources.append(MetadataSource(value))
            except ValueError:
                continue

        return cls(
            id=book_id,
            title=str(data.get("title") or book_id),
            slug=data.get("slug"),
            subtitle=data.get("subtitle"),
            authors=list(data.get("authors") or []),
            description=data.get("description"),
            publisher=data.get("publisher"),
            published_date=parse_published_date(data.get("published_date")),
            isbn10=data.get("isbn10"),
            isbn13=data.get("isbn13"),
            page_count=data.get("page_count"),
            language=data.get("language"),
            categories=list(data.get("categories") or []),
            average_rating=data.get("average_rating"),
            ratings_count=data.get("ratings_count"),
            dimensions=Dimensions.from_dict(data.get("dimensions")),
            internal_cover_path=data.get("internal_cover_path"),
            external_cover_url=data.get("external_cover_url"),
            image_links=dict(data.get("image_links") or {}),
            external_identifiers=[
                ExternalIdentifiers.from_dict(item)
                for item in data.get("external_identifiers") or []
            ],
            collections=[
                CollectionAssignment.from_dict(item) for item in data.get("collections") or []
            ],
            qualifiers=qualifiers,
            extra_qualifiers=extra_qualifiers,
            other_editions=[
                EditionInfo.from_dict(item) for item in data.get("other_editions") or []
            ],
            cached_recommendation_ids=list(data.get("cached_recommendation_ids") or []),
            contributing_sources=sources,
        )


def _bestseller_qualifier(data: Mapping[str, Any]) -> Optional[Qualifier]:
    """Lift ``nyt_*`` keys written by the bestseller merge into a qualifier."""
    payload = {
        key[len("nyt_"):]: value
        for key, value in data.items()
        if key.startswith("nyt_") and value is not None
    }
    if not payload:
        return None
    if data.get("amazon_product_url"):
        payload["amazon_product_url"] = data["amazon_product_url"]
    return Qualifier(QualifierKind.NYT_BESTSELLER, payload)


def best_image_link(image_links: Mapping[str, str]) -> Optional[str]:
    for tier in IMAGE_TIER_PREFERENCE:
        url = image_links.get(tier)
        if url:
            return url
    for url in image_links.values():
        if url:
            return url
    return None


def book_from_aggregate(
    aggregate: NormalizedBookAggregate, book_id: Optional[str] = None
) -> Book:
    """Convert a normalized aggregate into a canonical :class:`Book`."""
    identifiers = aggregate.identifiers
    if book_id is None:
        native = identifiers.external_id or aggregate.isbn13 or aggregate.isbn10
        if native:
            book_id = canonical_book_id(identifiers.source, native)
        else:
            book_id = canonical_book_id(identifiers.source, aggregate.slug_base or aggregate.title)

    book = Book(
        id=book_id,
        title=aggregate.title,
        slug=aggregate.slug_base or None,
        subtitle=aggregate.subtitle,
        authors=list(aggregate.authors),
        description=aggregate.description,
        publisher=aggregate.publisher,
        published_date=aggregate.published_date,
        isbn10=aggregate.isbn10,
        isbn13=aggregate.isbn13,
        page_count=aggregate.page_count,
        language=aggregate.language,
        categories=list(aggregate.categories),
        average_rating=identifiers.average_rating,
        ratings_count=identifiers.ratings_count,
        dimensions=aggregate.dimensions,
        image_links=dict(identifiers.image_links),
        external_identifiers=[identifiers],
        contributing_sources=[identifiers.source],
    )
    book.set_cover(best_image_link(identifiers.image_links))
    return book


__all__ = [
    "Book",
    "CollectionAssignment",
    "CoverLocation",
    "EditionInfo",
    "ExternalCover",
    "InternalCover",
    "Qualifier",
    "QualifierKind",
    "best_image_link",
    "book_from_aggregate",
    "canonical_book_id",
    "classify_cover",
]
