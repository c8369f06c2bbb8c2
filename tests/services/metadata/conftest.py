from typing import Any, Callable, List, Optional

import pytest

from bookhub.services.metadata.chain import TieredCacheChain
from bookhub.services.metadata.clients import ProviderRegistry
from bookhub.services.metadata.inflight import InFlightRegistry
from bookhub.services.metadata.orchestrator import BookDataOrchestrator
from bookhub.services.metadata.tiers import CacheTier, InMemoryCacheTier


@pytest.fixture
def make_orchestrator() -> Callable[..., BookDataOrchestrator]:
    """Build an orchestrator over two in-memory tiers and the given clients."""

    def _build(
        *clients: Any,
        tiers: Optional[List[CacheTier]] = None,
        **kwargs: Any,
    ) -> BookDataOrchestrator:
        chain = TieredCacheChain(
            tiers if tiers is not None else [InMemoryCacheTier("fast"), InMemoryCacheTier("slow")],
            registry=InFlightRegistry(5.0),
            tier_timeout_seconds=1.0,
        )
        return BookDataOrchestrator(chain, ProviderRegistry(clients), **kwargs)

    return _build
