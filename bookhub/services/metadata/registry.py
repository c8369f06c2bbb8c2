"""Builds an orchestrator, its tiers and its provider clients from settings."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import aiohttp

from bookhub import logging_manager as log_mgr
from bookhub.config_manager import BookHubSettings, ProviderSettings, get_settings, secret_value
from bookhub.database import create_engine_for_url, create_schema, get_session_factory

from .chain import TieredCacheChain
from .clients import (
    BaseProviderClient,
    GoogleBooksClient,
    NytBooksClient,
    OpenLibraryClient,
    ProviderRegistry,
)
from .embedding import EmbeddingService
from .inflight import InFlightRegistry
from .orchestrator import BookDataOrchestrator
from .recently_viewed import BoundedRecentlyViewedLog
from .resilience import CircuitBreaker, RateLimiter
from .tiers import (
    CacheTier,
    DatabaseCacheTier,
    DiskCacheTier,
    InMemoryCacheTier,
    ObjectStorageTier,
    RedisCacheTier,
    S3ObjectStorage,
)

logger = log_mgr.get_logger().getChild("services.metadata.registry")


def _client_kwargs(
    provider: ProviderSettings, name: str, session: Optional[aiohttp.ClientSession]
) -> Dict[str, Any]:
    return {
        "base_url": provider.base_url,
        "session": session,
        "timeout_seconds": provider.timeout_seconds,
        "rate_limit_wait_seconds": provider.rate_limit_wait_seconds,
        "rate_limiter": RateLimiter(
            name,
            requests_per_second=provider.requests_per_second,
            requests_per_minute=provider.requests_per_minute,
        ),
        "breaker": CircuitBreaker(
            name,
            failure_threshold=provider.failure_threshold,
            cooldown_seconds=provider.cooldown_seconds,
        ),
    }


def build_provider_registry(
    settings: BookHubSettings, *, session: Optional[aiohttp.ClientSession] = None
) -> ProviderRegistry:
    """Create a client for every enabled provider."""
    clients: List[BaseProviderClient] = []
    if settings.google_books.enabled:
        clients.append(
            GoogleBooksClient(
                api_key=secret_value(settings.google_books_api_key),
                **_client_kwargs(settings.google_books, "google_books", session),
            )
        )
    if settings.openlibrary.enabled:
        clients.append(
            OpenLibraryClient(**_client_kwargs(settings.openlibrary, "openlibrary", session))
        )
    if settings.nyt.enabled:
        clients.append(
            NytBooksClient(
                api_key=secret_value(settings.nyt_api_key),
                **_client_kwargs(settings.nyt, "nyt", session),
            )
        )
    registry = ProviderRegistry(clients)
    for client in clients:
        if not client.is_available:
            logger.info(
                "Provider %s disabled: API key not configured",
                client.name.value,
                extra={"event": "provider.unavailable", "source": client.name.value},
            )
    return registry


def build_tiers(settings: BookHubSettings) -> List[CacheTier]:
    """Create the cache tiers in lookup order.

    Disk first, then the database (or an in-process vector tier when no
    database is configured), then Redis, then object storage.
    """
    tiers: List[CacheTier] = []
    if settings.disk_cache_enabled:
        tiers.append(DiskCacheTier(Path(settings.cache_dir), settings.cache_ttl_hours))

    database_url = secret_value(settings.database_url)
    if settings.database_cache_enabled and database_url:
        engine = create_engine_for_url(database_url)
        create_schema(engine)
        tiers.append(DatabaseCacheTier(get_session_factory(engine)))
    else:
        tiers.append(InMemoryCacheTier())

    redis_url = secret_value(settings.redis_url)
    if redis_url:
        tiers.append(
            RedisCacheTier.from_url(
                redis_url,
                namespace=settings.redis_namespace,
                ttl_seconds=settings.redis_ttl_seconds,
            )
        )

    if settings.s3_bucket:
        client_kwargs: Dict[str, Any] = {}
        if settings.s3_endpoint_url:
            client_kwargs["endpoint_url"] = settings.s3_endpoint_url
        if settings.s3_region:
            client_kwargs["region_name"] = settings.s3_region
        tiers.append(
            ObjectStorageTier(
                S3ObjectStorage(settings.s3_bucket, **client_kwargs), prefix=settings.s3_prefix
            )
        )

    logger.info(
        "Configured cache tiers: %s",
        ", ".join(tier.name for tier in tiers),
        extra={"event": "tiers.configured"},
    )
    return tiers


def build_embedding_service(
    settings: BookHubSettings, *, session: Optional[aiohttp.ClientSession] = None
) -> EmbeddingService:
    return EmbeddingService(
        url=settings.embedding_url,
        enabled=settings.embedding_enabled,
        provider=settings.embedding_provider,
        model=settings.embedding_model,
        api_key=secret_value(settings.embedding_api_key),
        dimension=settings.embedding_dimension,
        session=session,
    )


def create_orchestrator(
    settings: Optional[BookHubSettings] = None,
    *,
    session: Optional[aiohttp.ClientSession] = None,
    tiers: Optional[List[CacheTier]] = None,
    providers: Optional[ProviderRegistry] = None,
) -> BookDataOrchestrator:
    """Wire a :class:`BookDataOrchestrator` from ``settings`` (the active settings by default).

    Args:
        settings: Configuration to build from.
        session: Shared aiohttp session for providers and embeddings.
        tiers: Replaces the tiers built from ``settings``.
        providers: Replaces the provider clients built from ``settings``.
    """
    settings = settings or get_settings()
    chain = TieredCacheChain(
        tiers if tiers is not None else build_tiers(settings),
        registry=InFlightRegistry(settings.inflight_timeout_seconds),
        tier_timeout_seconds=settings.tier_timeout_seconds,
    )
    providers = providers or build_provider_registry(settings, session=session)
    orchestrator = BookDataOrchestrator(
        chain,
        providers,
        recently_viewed=BoundedRecentlyViewedLog(settings.recently_viewed_capacity),
        search_result_limit=settings.search_result_limit,
        external_fallback_enabled=settings.external_fallback_enabled,
        embedder=build_embedding_service(settings, session=session),
    )
    return orchestrator


__all__ = [
    "build_embedding_service",
    "build_provider_registry",
    "build_tiers",
    "create_orchestrator",
]
