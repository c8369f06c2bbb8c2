"""Similar-book lookup: vector search with a category/author heuristic fallback."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from bookhub import logging_manager as log_mgr
from bookhub import observability

from .book import Book
from .chain import TieredCacheChain
from .embedding import EmbeddingService
from .keys import book_cache_key
from .tiers.base import CacheTier
from .types import CacheEntry

logger = log_mgr.get_logger().getChild("services.metadata.similarity")

SearchFn = Callable[[str], Awaitable[List[Book]]]

AUTHOR_BOOST = 0.5


def _normalized(values: Sequence[str]) -> frozenset[str]:
    return frozenset(value.strip().lower() for value in values if value and value.strip())


def category_overlap(left: Sequence[str], right: Sequence[str]) -> float:
    """Jaccard index of two category sets, compared case-insensitively."""
    left_set, right_set = _normalized(left), _normalized(right)
    union = left_set | right_set
    if not union:
        return 0.0
    return len(left_set & right_set) / len(union)


def similarity_score(source: Book, candidate: Book) -> float:
    score = category_overlap(source.categories, candidate.categories)
    if _normalized(source.authors) & _normalized(candidate.authors):
        score += AUTHOR_BOOST
    return score


class SimilarityService:
    """Finds books similar to a source book.

    The primary path runs a cosine KNN query against the chain's
    vector-capable tier using the source book's embedding (embedding the
    book first when needed). When there is no vector tier, the source only
    has a placeholder embedding, or the query finds nothing, candidates
    from author and category searches are ranked by
    :func:`similarity_score`.
    """

    def __init__(
        self,
        chain: TieredCacheChain,
        search: SearchFn,
        *,
        embedder: Optional[EmbeddingService] = None,
    ) -> None:
        self._chain = chain
        self._search = search
        self._embedder = embedder or EmbeddingService()

    async def similar(self, book: Book, count: int) -> List[Book]:
        if count <= 0:
            return []
        results = await self._vector_similar(book, count)
        if results:
            observability.increment_counter("similarity.path", path="vector")
            return results
        observability.increment_counter("similarity.path", path="heuristic")
        return await self._heuristic_similar(book, count)

    async def ensure_embedding(self, tier: CacheTier, book: Book) -> Tuple[List[float], bool]:
        """Return the stored embedding for ``book``, generating and storing one if absent."""
        key = book_cache_key(book.id)
        entry = await tier.get(key)
        if entry is not None and entry.embedding:
            return entry.embedding, entry.embedding_is_placeholder
        result = await self._embedder.embed_book(book)
        await tier.put(
            key,
            CacheEntry.fresh(
                book.to_dict(),
                embedding=result.vector,
                embedding_is_placeholder=result.is_placeholder,
            ),
        )
        return result.vector, result.is_placeholder

    async def _vector_similar(self, book: Book, count: int) -> List[Book]:
        tier = self._chain.vector_tier
        if tier is None:
            return []
        key = book_cache_key(book.id)
        try:
            embedding, is_placeholder = await self.ensure_embedding(tier, book)
            if is_placeholder:
                logger.debug(
                    "Skipping vector search for %s; placeholder embedding",
                    book.id,
                    extra={"event": "similarity.placeholder", "tier": tier.name},
                )
                return []
            # Over-fetch so alias keys of one book do not crowd out others.
            matches = await tier.knn(embedding, count * 2, exclude_keys=[key])
        except Exception as exc:  # noqa: BLE001 - vector search degrades to the heuristic
            logger.warning(
                "Vector search failed; using heuristic",
                extra={"event": "similarity.vector_failed", "tier": tier.name, "error": str(exc)},
            )
            return []

        results: List[Book] = []
        for match in matches:
            try:
                candidate = Book.from_dict(match.entry.payload)
            except (KeyError, TypeError, ValueError):
                continue
            if candidate == book or candidate in results:
                continue
            results.append(candidate)
            if len(results) >= count:
                break
        return results

    def _candidate_queries(self, book: Book) -> List[str]:
        queries: List[str] = []
        if book.authors:
            queries.append(f'inauthor:"{book.authors[0]}"')
        for category in book.categories[:2]:
            queries.append(f'subject:"{category}"')
        return queries

    async def _heuristic_similar(self, book: Book, count: int) -> List[Book]:
        queries = self._candidate_queries(book)
        if not queries:
            return []
        batches = await asyncio.gather(
            *(self._search(query) for query in queries), return_exceptions=True
        )

        pool: Dict[str, Book] = {}
        for query, batch in zip(queries, batches):
            if isinstance(batch, BaseException):
                logger.warning(
                    "Candidate search failed",
                    extra={"event": "similarity.search_failed", "query": query, "error": str(batch)},
                )
                continue
            for candidate in batch:
                if candidate.id == book.id:
                    continue
                if book.isbn13 and candidate.isbn13 == book.isbn13:
                    continue
                pool.setdefault(candidate.id, candidate)

        ranked = sorted(
            pool.values(),
            key=lambda candidate: (-similarity_score(book, candidate), candidate.title.lower()),
        )
        return ranked[:count]

    async def close(self) -> None:
        await self._embedder.close()


__all__ = ["AUTHOR_BOOST", "SimilarityService", "category_overlap", "similarity_score"]
