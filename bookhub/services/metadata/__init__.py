"""Multi-source book lookup with tiered caching and in-flight deduplication."""

from __future__ import annotations

from .types import (
    CacheEntry,
    Dimensions,
    ExternalIdentifiers,
    LookupState,
    MetadataSource,
    NormalizedBookAggregate,
)
from .book import (
    Book,
    CollectionAssignment,
    CoverLocation,
    EditionInfo,
    ExternalCover,
    InternalCover,
    Qualifier,
    QualifierKind,
    book_from_aggregate,
    canonical_book_id,
    classify_cover,
)
from .errors import (
    AggregationConflict,
    BookLookupError,
    CircuitOpenError,
    ExhaustedError,
    ProviderRateLimited,
    ProviderUnavailable,
    TierTransientFailure,
    ValidationError,
)
from .mappers import GoogleBooksMapper, NytBestsellerMapper, OpenLibraryMapper, map_any
from .normalization import DataAggregator, MergedBookRecord, merge_bestseller, merge_records
from .resilience import CircuitBreaker, RateLimiter
from .keys import book_cache_key, isbn_cache_key, search_cache_key
from .inflight import InFlightRegistry
from .chain import Resolution, TieredCacheChain
from .embedding import EmbeddingService, placeholder_embedding
from .similarity import SimilarityService
from .recently_viewed import BoundedRecentlyViewedLog, RecentlyViewedLog
from .orchestrator import BookDataOrchestrator
from .registry import create_orchestrator

__all__ = [
    # Types
    "Book",
    "CacheEntry",
    "CollectionAssignment",
    "CoverLocation",
    "Dimensions",
    "EditionInfo",
    "ExternalCover",
    "ExternalIdentifiers",
    "InternalCover",
    "LookupState",
    "MetadataSource",
    "NormalizedBookAggregate",
    "Qualifier",
    "QualifierKind",
    "book_from_aggregate",
    "canonical_book_id",
    "classify_cover",
    # Errors
    "AggregationConflict",
    "BookLookupError",
    "CircuitOpenError",
    "ExhaustedError",
    "ProviderRateLimited",
    "ProviderUnavailable",
    "TierTransientFailure",
    "ValidationError",
    # Mapping and merging
    "DataAggregator",
    "GoogleBooksMapper",
    "MergedBookRecord",
    "NytBestsellerMapper",
    "OpenLibraryMapper",
    "map_any",
    "merge_bestseller",
    "merge_records",
    # Resilience
    "CircuitBreaker",
    "RateLimiter",
    # Caching
    "InFlightRegistry",
    "Resolution",
    "TieredCacheChain",
    "book_cache_key",
    "isbn_cache_key",
    "search_cache_key",
    # Orchestration
    "BookDataOrchestrator",
    "BoundedRecentlyViewedLog",
    "EmbeddingService",
    "RecentlyViewedLog",
    "SimilarityService",
    "create_orchestrator",
    "placeholder_embedding",
]
