"""Merging of normalized records from several providers into one book."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from bookhub import logging_manager as log_mgr

from .book import Book, best_image_link
from .errors import AggregationConflict
from .mappers import ISBN_10_TAG, ISBN_13_TAG, map_any
from .text import build_slug_base, unique_strings
from .types import Dimensions, ExternalIdentifiers, MetadataSource, NormalizedBookAggregate

logger = log_mgr.get_logger().getChild("services.metadata.normalization")

SourceRecord = Union[NormalizedBookAggregate, Mapping[str, Any]]

# Bestseller-list fields that must never shadow a same-named primary field.
BESTSELLER_PREFIXED_FIELDS = (
    "rank",
    "rank_last_week",
    "weeks_on_list",
    "buy_links",
    "list_name",
    "list_name_encoded",
    "display_name",
    "bestsellers_date",
    "published_date",
    "asterisk",
    "dagger",
)
BESTSELLER_PREFIX = "nyt_"


@dataclass(slots=True)
class MergedBookRecord:
    """Field-level merge of every source that described one logical book."""

    primary_id: str
    title: str
    source_ids: Dict[str, str] = field(default_factory=dict)
    subtitle: Optional[str] = None
    authors: List[str] = field(default_factory=list)
    description: Optional[str] = None
    publisher: Optional[str] = None
    published_date: Optional[date] = None
    isbn10: Optional[str] = None
    isbn13: Optional[str] = None
    industry_identifiers: List[Tuple[str, str]] = field(default_factory=list)
    page_count: Optional[int] = None
    language: Optional[str] = None
    categories: List[str] = field(default_factory=list)
    average_rating: Optional[float] = None
    ratings_count: Optional[int] = None
    dimensions: Optional[Dimensions] = None
    image_links: Dict[str, str] = field(default_factory=dict)
    identifiers: List[ExternalIdentifiers] = field(default_factory=list)
    contributing_sources: List[MetadataSource] = field(default_factory=list)
    raw_json: Mapping[str, Any] = field(default_factory=dict)
    raw_json_source: Optional[MetadataSource] = None
    conflicts: List[AggregationConflict] = field(default_factory=list)

    def to_book(self, book_id: Optional[str] = None) -> Book:
        book = Book(
            id=book_id or self.primary_id,
            title=self.title,
            slug=build_slug_base(self.title, self.authors) or None,
            subtitle=self.subtitle,
            authors=list(self.authors),
            description=self.description,
            publisher=self.publisher,
            published_date=self.published_date,
            isbn10=self.isbn10,
            isbn13=self.isbn13,
            page_count=self.page_count,
            language=self.language,
            categories=list(self.categories),
            average_rating=self.average_rating,
            ratings_count=self.ratings_count,
            dimensions=self.dimensions,
            image_links=dict(self.image_links),
            external_identifiers=list(self.identifiers),
            contributing_sources=list(self.contributing_sources),
        )
        book.set_cover(best_image_link(self.image_links))
        return book


def _first(values: Sequence[Any]) -> Optional[Any]:
    for value in values:
        if value is not None and value != "":
            return value
    return None


def _coerce_sources(sources: Sequence[SourceRecord]) -> List[NormalizedBookAggregate]:
    records: List[NormalizedBookAggregate] = []
    for source in sources:
        if isinstance(source, NormalizedBookAggregate):
            records.append(source)
            continue
        mapped = map_any(source)
        if mapped is None:
            logger.debug(
                "Skipping source payload that does not map to a book",
                extra={"event": "aggregation.source_skipped"},
            )
            continue
        records.append(mapped)
    return records


def _record_conflict(
    conflicts: List[AggregationConflict],
    primary_id: str,
    field_name: str,
    chosen: object,
    candidates: Sequence[object],
    reason: str,
) -> None:
    conflict = AggregationConflict(field_name, chosen, tuple(candidates), reason)
    conflicts.append(conflict)
    logger.info(
        "Resolved conflicting %s values for %s",
        field_name,
        primary_id,
        extra={
            "event": "aggregation.conflict",
            "field": field_name,
            "chosen": chosen,
            "candidates": list(candidates),
            "reason": reason,
        },
    )


def merge_records(
    primary_id: str,
    source_id_field: str,
    sources: Sequence[SourceRecord],
) -> MergedBookRecord:
    """Merge provider records, listed in preference order, field by field.

    Precedence per field:

    - title, subtitle, publisher, published date, language, dimensions,
      rating: first non-empty value in preference order (title falls back
      to ``primary_id``);
    - authors: union in first-seen order; categories: union;
    - description: the longest non-empty candidate;
    - ISBN-10/13: union of every tagged value, kept sorted; the
      lexicographically smallest value of each kind becomes the primary;
    - page count: first positive value.

    Args:
        primary_id: Identifier of the book being merged.
        source_id_field: Name under which ``primary_id`` is recorded in
            :attr:`MergedBookRecord.source_ids`.
        sources: Normalized aggregates or raw provider payloads.

    Returns:
        The merged record with provenance and the first source's raw JSON.
    """

    records = _coerce_sources(sources)
    conflicts: List[AggregationConflict] = []

    title = _first([record.title for record in records]) or primary_id
    description: Optional[str] = None
    for record in records:
        if record.description and (description is None or len(record.description) > len(description)):
            description = record.description

    isbn_pairs = sorted(
        {pair for record in records for pair in record.industry_identifiers}
        | {(ISBN_10_TAG, record.isbn10) for record in records if record.isbn10}
        | {(ISBN_13_TAG, record.isbn13) for record in records if record.isbn13}
    )
    primaries: Dict[str, Optional[str]] = {}
    for tag in (ISBN_10_TAG, ISBN_13_TAG):
        values = [value for kind, value in isbn_pairs if kind == tag]
        primaries[tag] = values[0] if values else None
        if len(values) > 1:
            _record_conflict(
                conflicts, primary_id, tag.lower(), values[0], values, "lexicographic minimum"
            )

    image_links: Dict[str, str] = {}
    for record in records:
        for tier, url in record.identifiers.image_links.items():
            image_links.setdefault(tier, url)

    contributing: List[MetadataSource] = []
    for record in records:
        if record.source not in contributing:
            contributing.append(record.source)

    merged = MergedBookRecord(
        primary_id=primary_id,
        title=title,
        source_ids={source_id_field: primary_id},
        subtitle=_first([record.subtitle for record in records]),
        authors=unique_strings(author for record in records for author in record.authors),
        description=description,
        publisher=_first([record.publisher for record in records]),
        published_date=_first([record.published_date for record in records]),
        isbn10=primaries[ISBN_10_TAG],
        isbn13=primaries[ISBN_13_TAG],
        industry_identifiers=list(isbn_pairs),
        page_count=_first([record.page_count for record in records]),
        language=_first([record.language for record in records]),
        categories=unique_strings(
            category for record in records for category in record.categories
        ),
        average_rating=_first([record.identifiers.average_rating for record in records]),
        ratings_count=_first([record.identifiers.ratings_count for record in records]),
        dimensions=_first([record.dimensions for record in records]),
        image_links=image_links,
        identifiers=[record.identifiers for record in records],
        contributing_sources=contributing,
        raw_json=records[0].raw if records else {},
        raw_json_source=records[0].source if records else None,
        conflicts=conflicts,
    )
    logger.debug(
        "Merged %d source records for %s",
        len(records),
        primary_id,
        extra={
            "event": "aggregation.merged",
            "sources": [source.value for source in contributing],
        },
    )
    return merged


def merge_bestseller(
    google_record: Mapping[str, Any],
    nyt_record: Mapping[str, Any],
    book_id: str,
) -> Dict[str, Any]:
    """Fold a bestseller-list entry into a Google-sourced record.

    The Google record is the base and keeps its identity: an ``id`` on the
    bestseller entry is ignored. List-specific fields are stored under
    ``nyt_``-prefixed keys; any other bestseller field only fills a key the
    base record lacks.
    """

    merged: Dict[str, Any] = copy.deepcopy(dict(google_record))
    native_id = merged.get("id")
    if native_id and native_id != book_id:
        merged.setdefault("google_book_id", native_id)
    merged["id"] = book_id

    for key, value in nyt_record.items():
        if value is None:
            continue
        if key == "id":
            if value != book_id:
                logger.info(
                    "Ignoring conflicting id from bestseller record for %s",
                    book_id,
                    extra={
                        "event": "aggregation.conflict",
                        "field": "id",
                        "chosen": book_id,
                        "candidates": [book_id, value],
                        "reason": "primary source id wins",
                    },
                )
            continue
        if key in BESTSELLER_PREFIXED_FIELDS:
            merged[f"{BESTSELLER_PREFIX}{key}"] = copy.deepcopy(value)
            continue
        if merged.get(key) in (None, "", [], {}):
            merged[key] = copy.deepcopy(value)
    return merged


class DataAggregator:
    """Asynchronous merge facade used by the orchestrator.

    Merging is CPU-only; the coroutine form keeps one non-blocking
    contract for every call path.
    """

    async def aggregate(
        self,
        primary_id: str,
        source_id_field: str,
        sources: Sequence[SourceRecord],
    ) -> MergedBookRecord:
        return merge_records(primary_id, source_id_field, sources)

    async def merge_bestseller(
        self,
        google_record: Mapping[str, Any],
        nyt_record: Mapping[str, Any],
        book_id: str,
    ) -> Dict[str, Any]:
        return merge_bestseller(google_record, nyt_record, book_id)


__all__ = [
    "BESTSELLER_PREFIX",
    "BESTSELLER_PREFIXED_FIELDS",
    "DataAggregator",
    "MergedBookRecord",
    "merge_bestseller",
    "merge_records",
]
