import asyncio
from pathlib import Path

import pytest

from bookhub.config_manager import BookHubSettings
from bookhub.services.metadata.registry import (
    build_embedding_service,
    build_provider_registry,
    build_tiers,
    create_orchestrator,
)
from bookhub.services.metadata.tiers import DatabaseCacheTier, DiskCacheTier, InMemoryCacheTier
from bookhub.services.metadata.types import MetadataSource

pytestmark = pytest.mark.metadata


class TestBuildTiers:
    def test_disk_then_in_memory_by_default(self, tmp_path: Path) -> None:
        tiers = build_tiers(BookHubSettings(cache_dir=str(tmp_path)))

        assert [tier.name for tier in tiers] == ["disk", "memory"]
        assert isinstance(tiers[0], DiskCacheTier)
        assert isinstance(tiers[1], InMemoryCacheTier)

    def test_every_configured_backend_in_lookup_order(self, tmp_path: Path) -> None:
        settings = BookHubSettings.model_validate(
            {
                "cache_dir": str(tmp_path),
                "database_url": "sqlite://",
                "redis_url": "redis://localhost:6379/0",
                "s3_bucket": "books",
                "s3_endpoint_url": "http://localhost:9000",
                "s3_region": "us-east-1",
            }
        )

        tiers = build_tiers(settings)

        assert [tier.name for tier in tiers] == ["disk", "database", "redis", "object_storage"]
        assert isinstance(tiers[1], DatabaseCacheTier)

    def test_disabled_disk_cache_is_skipped(self) -> None:
        tiers = build_tiers(BookHubSettings(disk_cache_enabled=False))

        assert [tier.name for tier in tiers] == ["memory"]


class TestBuildProviders:
    def test_keys_decide_availability(self) -> None:
        registry = build_provider_registry(BookHubSettings())

        assert registry.get(MetadataSource.GOOGLE_BOOKS) is not None
        assert registry.get(MetadataSource.OPENLIBRARY) is not None
        assert registry.get(MetadataSource.NYT) is None

    def test_provider_settings_reach_the_clients(self) -> None:
        settings = BookHubSettings.model_validate(
            {"nyt_api_key": "nyt-key", "nyt": {"failure_threshold": 2}, "openlibrary": {"enabled": False}}
        )

        registry = build_provider_registry(settings)

        nyt = registry.get(MetadataSource.NYT)
        assert nyt is not None
        assert nyt.breaker.failure_threshold == 2
        assert registry.get(MetadataSource.OPENLIBRARY) is None


def test_embedding_service_follows_the_settings() -> None:
    service = build_embedding_service(
        BookHubSettings(embedding_enabled=True, embedding_url="http://embed", embedding_dimension=8)
    )

    assert service.enabled
    assert service.dimension == 8


def test_create_orchestrator_uses_the_settings(tmp_path: Path) -> None:
    settings = BookHubSettings(
        cache_dir=str(tmp_path), search_result_limit=10, external_fallback_enabled=False
    )

    orchestrator = create_orchestrator(settings, tiers=[InMemoryCacheTier()])

    assert orchestrator.search_result_limit == 10
    assert orchestrator.external_fallback_enabled is False
    assert [tier.name for tier in orchestrator.chain.tiers] == ["memory"]
    asyncio.run(orchestrator.close())
