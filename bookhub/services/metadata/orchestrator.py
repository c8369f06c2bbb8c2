"""Facade resolving books by id, ISBN, query and similarity."""

from __future__ import annotations

import asyncio
import re
import uuid
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from bookhub import logging_manager as log_mgr
from bookhub import observability
from bookhub.config_manager.constants import DEFAULT_SEARCH_RESULT_LIMIT

from .book import (
    Book,
    CollectionAssignment,
    EditionInfo,
    book_from_aggregate,
    canonical_book_id,
)
from .chain import PROVIDER_TIER, TieredCacheChain
from .clients.registry import ProviderRegistry
from .embedding import EmbeddingService
from .errors import ExhaustedError, ProviderUnavailable, ValidationError
from .keys import book_cache_key, isbn_cache_key, search_page_key
from .normalization import DataAggregator
from .recently_viewed import BoundedRecentlyViewedLog, RecentlyViewedLog
from .similarity import SimilarityService
from .text import coerce_positive_int, looks_like_isbn, validate_isbn
from .types import MetadataSource, NormalizedBookAggregate

logger = log_mgr.get_logger().getChild("services.metadata.orchestrator")

_OPENLIBRARY_ID = re.compile(r"^OL\d+[MW]$", re.IGNORECASE)

MISS = "miss"


def _decode_books(payload: Any) -> List[Book]:
    if not isinstance(payload, list):
        raise TypeError("expected a list of books")
    return [Book.from_dict(item) for item in payload]


def _dedupe(books: Iterable[Book]) -> List[Book]:
    seen: Set[Book] = set()
    unique: List[Book] = []
    for book in books:
        if book not in seen:
            seen.add(book)
            unique.append(book)
    return unique


def _edition_info(book: Book) -> EditionInfo:
    primary = book.external_identifiers[0] if book.external_identifiers else None
    return EditionInfo(
        book_id=book.id,
        external_id=primary.external_id if primary else None,
        edition_type="ebook" if primary and (primary.pdf_available or primary.epub_available) else None,
        isbn10=book.isbn10,
        isbn13=book.isbn13,
        published_date=book.published_date,
        cover_url=book.cover_url,
    )


def link_editions(books: List[Book]) -> List[Book]:
    """Record every other book of ``books`` as an edition of each one."""
    if len(books) < 2:
        return books
    infos = [_edition_info(book) for book in books]
    for book in books:
        known = {edition.book_id for edition in book.other_editions}
        for info in infos:
            if info.book_id != book.id and info.book_id not in known:
                book.other_editions.append(info)
    return books


class BookDataOrchestrator:
    """Entry point for every book lookup.

    Each public operation validates its input before touching a cache tier
    or provider, resolves through the :class:`TieredCacheChain` and maps
    exhaustion onto an empty outcome: ``None`` for single books and ``[]``
    for lists.
    """

    def __init__(
        self,
        chain: TieredCacheChain,
        providers: ProviderRegistry,
        *,
        aggregator: Optional[DataAggregator] = None,
        recently_viewed: Optional[RecentlyViewedLog] = None,
        similarity: Optional[SimilarityService] = None,
        embedder: Optional[EmbeddingService] = None,
        search_result_limit: int = DEFAULT_SEARCH_RESULT_LIMIT,
        external_fallback_enabled: bool = True,
    ) -> None:
        self.chain = chain
        self.providers = providers
        self.aggregator = aggregator or DataAggregator()
        self.recently_viewed = recently_viewed or BoundedRecentlyViewedLog()
        self.similarity = similarity or SimilarityService(
            chain, self._candidate_search, embedder=embedder
        )
        self.search_result_limit = search_result_limit
        self.external_fallback_enabled = external_fallback_enabled
        self._background: Set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # By id
    # ------------------------------------------------------------------
    async def resolve_by_id(self, book_id: str) -> Optional[Book]:
        """Return the book for ``book_id`` or ``None`` when no source has it.

        Raises:
            ValidationError: If ``book_id`` is empty or blank.
        """
        identifier = (book_id or "").strip()
        if not identifier:
            raise ValidationError("Book id must not be blank")
        with observability.lookup_operation(
            "resolve_by_id", attributes={"correlation_id": uuid.uuid4().hex}
        ):
            book, _ = await self._resolve_book(identifier)
        if book is not None:
            self._record_view(book)
        return book

    async def _resolve_book(self, identifier: str) -> tuple[Optional[Book], str]:
        key = book_cache_key(identifier)
        try:
            resolution = await self.chain.resolve(
                key, lambda: self._load_by_id(identifier), decode=Book.from_dict
            )
        except ExhaustedError:
            return None, MISS
        book = resolution.value
        if resolution.tier == PROVIDER_TIER and book.id != identifier:
            await self.chain.store(book_cache_key(book.id), book.to_dict())
        return book, resolution.tier

    def _primary_fetches(self, identifier: str) -> List[tuple[MetadataSource, str]]:
        if _OPENLIBRARY_ID.match(identifier):
            return [(MetadataSource.OPENLIBRARY, identifier)]
        fetches = [(MetadataSource.GOOGLE_BOOKS, identifier)]
        if self.external_fallback_enabled and looks_like_isbn(identifier):
            fetches.append((MetadataSource.OPENLIBRARY, identifier))
        return fetches

    async def _fetch(
        self, source: MetadataSource, identifier: str
    ) -> Optional[Mapping[str, Any]]:
        client = self.providers.get(source)
        if client is None:
            raise ProviderUnavailable(source.value, "provider not configured")
        return await client.fetch_by_id(identifier)

    async def _load_by_id(self, identifier: str) -> Optional[Dict[str, Any]]:
        primary: Optional[NormalizedBookAggregate] = None
        failure: Optional[ProviderUnavailable] = None
        for source, native_id in self._primary_fetches(identifier):
            try:
                raw = await self._fetch(source, native_id)
            except ProviderUnavailable as exc:
                failure = exc
                continue
            primary = self.providers.get(source).mapper.map(raw) if raw else None
            if primary is not None:
                break

        if primary is None:
            if failure is not None:
                raise failure
            return None

        sources: List[NormalizedBookAggregate] = [primary]
        enrichment = await self._enrich(primary)
        if enrichment is not None:
            sources.append(enrichment)

        native = primary.identifiers.external_id or identifier
        merged = await self.aggregator.aggregate(native, f"{primary.source.value}_id", sources)
        return merged.to_book(canonical_book_id(primary.source, native)).to_dict()

    async def _enrich(self, primary: NormalizedBookAggregate) -> Optional[NormalizedBookAggregate]:
        """Look the book up on OpenLibrary by ISBN to fill fields the primary lacks."""
        isbn = primary.isbn13 or primary.isbn10
        if (
            not self.external_fallback_enabled
            or primary.source is MetadataSource.OPENLIBRARY
            or not isbn
        ):
            return None
        client = self.providers.get(MetadataSource.OPENLIBRARY)
        if client is None:
            return None
        try:
            raw = await client.fetch_by_id(isbn)
        except ProviderUnavailable as exc:
            logger.info(
                "Skipping enrichment from %s: %s",
                exc.provider,
                exc,
                extra={"event": "aggregation.enrichment_skipped", "source": exc.provider},
            )
            return None
        return client.mapper.map(raw) if raw else None

    # ------------------------------------------------------------------
    # By ISBN
    # ------------------------------------------------------------------
    async def resolve_by_isbn(self, isbn: str) -> List[Book]:
        """Return every edition matching ``isbn`` (empty when none is known).

        Raises:
            ValidationError: If ``isbn`` has a bad length or checksum.
        """
        books = await self._resolve_isbn(isbn)
        if books:
            self._record_view(books[0])
        return books

    async def _resolve_isbn(self, isbn: str) -> List[Book]:
        normalized = validate_isbn(isbn)
        key = isbn_cache_key(normalized)
        with observability.lookup_operation(
            "resolve_by_isbn", attributes={"correlation_id": uuid.uuid4().hex}
        ):
            try:
                resolution = await self.chain.resolve(
                    key, lambda: self._load_by_isbn(normalized), decode=_decode_books
                )
            except ExhaustedError:
                return []
        books = resolution.value
        if resolution.tier == PROVIDER_TIER:
            await asyncio.gather(
                *(self.chain.store(book_cache_key(book.id), book.to_dict()) for book in books)
            )
        return books

    async def _load_by_isbn(self, isbn: str) -> Optional[List[Dict[str, Any]]]:
        aggregates: List[NormalizedBookAggregate] = []
        failure: Optional[ProviderUnavailable] = None

        google = self.providers.get(MetadataSource.GOOGLE_BOOKS)
        if google is not None:
            try:
                payload = await google.search_by_isbn(isbn)
                for item in google.extract_items(payload):
                    aggregate = google.mapper.map(item)
                    if aggregate is not None:
                        aggregates.append(aggregate)
            except ProviderUnavailable as exc:
                failure = exc

        openlibrary_record: Optional[NormalizedBookAggregate] = None
        if self.external_fallback_enabled or not aggregates:
            openlibrary = self.providers.get(MetadataSource.OPENLIBRARY)
            if openlibrary is not None:
                try:
                    raw = await openlibrary.fetch_by_id(isbn)
                    openlibrary_record = openlibrary.mapper.map(raw) if raw else None
                except ProviderUnavailable as exc:
                    failure = failure or exc

        if not aggregates and openlibrary_record is None:
            if failure is not None:
                raise failure
            return None

        books: List[Book] = []
        matched_openlibrary = False
        for aggregate in aggregates:
            sources = [aggregate]
            if openlibrary_record is not None and self._same_isbn(aggregate, openlibrary_record):
                sources.append(openlibrary_record)
                matched_openlibrary = True
            native = aggregate.identifiers.external_id or isbn
            merged = await self.aggregator.aggregate(
                native, f"{aggregate.source.value}_id", sources
            )
            books.append(merged.to_book(canonical_book_id(aggregate.source, native)))
        if openlibrary_record is not None and not matched_openlibrary:
            books.append(book_from_aggregate(openlibrary_record))

        return [book.to_dict() for book in link_editions(_dedupe(books))]

    @staticmethod
    def _same_isbn(left: NormalizedBookAggregate, right: NormalizedBookAggregate) -> bool:
        left_values = {value for _, value in left.industry_identifiers} | {
            value for value in (left.isbn10, left.isbn13) if value
        }
        right_values = {value for value in (right.isbn10, right.isbn13) if value}
        right_values |= {value for _, value in right.industry_identifiers}
        return bool(left_values & right_values)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------
    async def search(
        self,
        query: str,
        start_index: int = 0,
        max_results: int = 20,
        language: Optional[str] = None,
    ) -> List[Book]:
        """Return up to ``max_results`` books for ``query`` starting at ``start_index``.

        Provider results are fetched and cached in fixed pages of
        ``search_result_limit`` books, so any window of a query reuses the
        cached pages it overlaps.

        Raises:
            ValidationError: If ``query`` is blank or ``start_index`` is negative.
        """
        # Validates the query before anything else happens.
        search_page_key(query, language, 0)
        if start_index < 0:
            raise ValidationError("start_index must not be negative")
        if max_results <= 0:
            return []

        limit = self.search_result_limit
        page = start_index // limit
        offset = start_index - page * limit
        unique: List[Book] = []
        with observability.lookup_operation(
            "search", attributes={"correlation_id": uuid.uuid4().hex}
        ):
            # Pages can overlap, so the window is cut from the de-duplicated run.
            while len(unique) < offset + max_results:
                books = await self._search_page(query, language, page)
                unique = _dedupe([*unique, *books])
                if len(books) < limit:
                    break
                page += 1
        return unique[offset: offset + max_results]

    async def _search_page(self, query: str, language: Optional[str], page: int) -> List[Book]:
        key = search_page_key(query, language, page)
        limit = self.search_result_limit
        try:
            resolution = await self.chain.resolve(
                key,
                lambda: self._load_search(query, page * limit, limit, language),
                decode=_decode_books,
            )
        except ExhaustedError:
            return []
        return resolution.value

    def _search_sources(self) -> List[MetadataSource]:
        sources = [MetadataSource.GOOGLE_BOOKS]
        if self.external_fallback_enabled:
            sources.append(MetadataSource.OPENLIBRARY)
        return sources

    async def _load_search(
        self, query: str, start_index: int, limit: int, language: Optional[str]
    ) -> Optional[List[Dict[str, Any]]]:
        failure: Optional[ProviderUnavailable] = None
        for source in self._search_sources():
            client = self.providers.get(source)
            if client is None:
                continue
            try:
                payload = await client.search(
                    query, start_index=start_index, max_results=limit, language=language
                )
            except ProviderUnavailable as exc:
                failure = exc
                continue
            books = [
                book_from_aggregate(aggregate)
                for aggregate in (client.mapper.map(item) for item in client.extract_items(payload))
                if aggregate is not None
            ]
            if books:
                return [book.to_dict() for book in _dedupe(books)]
        if failure is not None:
            raise failure
        return None

    async def _candidate_search(self, query: str) -> List[Book]:
        return await self.search(query, 0, self.search_result_limit)

    # ------------------------------------------------------------------
    # Similar books
    # ------------------------------------------------------------------
    async def get_similar(self, book_id: str, count: int = 5) -> List[Book]:
        """Return up to ``count`` books similar to ``book_id``.

        The ids found are stored on the source book's recommendation list.
        """
        identifier = (book_id or "").strip()
        if not identifier:
            raise ValidationError("Book id must not be blank")
        if count <= 0:
            return []
        with observability.lookup_operation(
            "get_similar", attributes={"correlation_id": uuid.uuid4().hex}
        ):
            book, _ = await self._resolve_book(identifier)
            if book is None:
                return []
            similar = await self.similarity.similar(book, count)
            if similar:
                book.add_recommendation_ids([candidate.id for candidate in similar])
                await self.chain.store(book_cache_key(book.id), book.to_dict())
        return similar

    # ------------------------------------------------------------------
    # Warming and bestseller ingestion
    # ------------------------------------------------------------------
    async def warm(self, book_ids: Iterable[str], *, concurrency: int = 4) -> Dict[str, str]:
        """Resolve ``book_ids`` with bounded concurrency.

        Returns:
            Mapping of each id to the tier that served it, ``"provider"``
            for fresh fetches, or ``"miss"``.
        """
        semaphore = asyncio.Semaphore(max(1, concurrency))
        report: Dict[str, str] = {}

        async def _warm_one(identifier: str) -> None:
            cleaned = (identifier or "").strip()
            if not cleaned:
                report[identifier] = MISS
                return
            async with semaphore:
                _, tier = await self._resolve_book(cleaned)
            report[identifier] = tier

        await asyncio.gather(*(_warm_one(identifier) for identifier in dict.fromkeys(book_ids)))
        logger.info(
            "Warmed %d books",
            len(report),
            extra={
                "event": "cache.warmed",
                "status": f"{sum(1 for tier in report.values() if tier != MISS)}/{len(report)}",
            },
        )
        return report

    async def ingest_bestseller_list(self, list_code: str) -> List[Book]:
        """Tag every book of a bestseller list and store it through the tiers."""
        code = (list_code or "").strip()
        if not code:
            raise ValidationError("List code must not be blank")
        client = self.providers.get(MetadataSource.NYT)
        if client is None:
            logger.info(
                "Bestseller provider not configured",
                extra={"event": "bestseller.skipped", "source": MetadataSource.NYT.value},
            )
            return []
        try:
            payload = await client.fetch_by_id(code)
        except ProviderUnavailable as exc:
            logger.warning(
                "Cannot fetch bestseller list %s: %s",
                code,
                exc,
                extra={"event": "bestseller.failed", "source": exc.provider},
            )
            return []

        tagged: List[Book] = []
        for entry in client.extract_items(payload):
            book = await self._bestseller_base(entry, client.mapper.map(entry))
            if book is None:
                continue
            merged = await self.aggregator.merge_bestseller(book.to_dict(), entry, book.id)
            result = Book.from_dict(merged)
            result.add_collection(
                CollectionAssignment(
                    collection_id=str(entry.get("list_name_encoded") or code),
                    name=entry.get("display_name") or entry.get("list_name") or code,
                    collection_type="nyt_list",
                    rank=coerce_positive_int(entry.get("rank")),
                    source=MetadataSource.NYT.value,
                )
            )
            await self.chain.store(book_cache_key(result.id), result.to_dict())
            tagged.append(result)
        logger.info(
            "Ingested %d books from list %s",
            len(tagged),
            code,
            extra={"event": "bestseller.ingested", "source": MetadataSource.NYT.value},
        )
        return tagged

    async def _bestseller_base(
        self, entry: Mapping[str, Any], aggregate: Optional[NormalizedBookAggregate]
    ) -> Optional[Book]:
        for candidate in (entry.get("primary_isbn13"), entry.get("primary_isbn10")):
            if not candidate:
                continue
            try:
                books = await self._resolve_isbn(str(candidate))
            except ValidationError:
                continue
            if books:
                return books[0]
        return book_from_aggregate(aggregate) if aggregate is not None else None

    # ------------------------------------------------------------------
    # Recently viewed and lifecycle
    # ------------------------------------------------------------------
    def _record_view(self, book: Book) -> None:
        task = asyncio.ensure_future(self.recently_viewed.record(book))
        self._background.add(task)
        task.add_done_callback(self._view_recorded)

    def _view_recorded(self, task: "asyncio.Task[None]") -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(
                "Failed to record recently viewed book",
                extra={"event": "recently_viewed.failed", "error": str(exc)},
            )

    async def drain(self) -> None:
        """Wait for pending background work such as recently-viewed updates."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def provider_statuses(self) -> Dict[str, Dict[str, Any]]:
        return self.providers.statuses()

    async def close(self) -> None:
        await self.drain()
        await self.providers.close()
        await self.similarity.close()
        for tier in self.chain.tiers:
            await tier.close()


__all__ = ["BookDataOrchestrator", "MISS", "link_editions"]
