"""Ordered cache tier chain with write-through promotion."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, Sequence, Tuple, TypeVar

from bookhub import logging_manager as log_mgr
from bookhub import observability

from .errors import ExhaustedError, ProviderUnavailable
from .inflight import InFlightRegistry
from .tiers.base import CacheTier
from .types import CacheEntry, LookupState

logger = log_mgr.get_logger().getChild("services.metadata.chain")

T = TypeVar("T")

PROVIDER_TIER = "provider"

Loader = Callable[[], Awaitable[Optional[Any]]]


def _identity(payload: Any) -> Any:
    return payload


@dataclass(frozen=True, slots=True)
class Resolution(Generic[T]):
    """A resolved value and the tier (or ``"provider"``) that produced it."""

    key: str
    value: T
    tier: str
    entry: CacheEntry


class TieredCacheChain:
    """Resolves cache keys through a fixed sequence of tiers, then a loader.

    For a key the chain probes each tier in construction order and stops at
    the first hit; the hit is written back to every tier before it so
    that the next lookup is served by the cheapest tier. When every tier
    misses, ``loader`` (the provider path) runs and its payload is written
    to all tiers. A tier that raises or exceeds ``tier_timeout_seconds``
    counts as a miss for that tier only. Concurrent lookups of one key
    share a single resolution through the :class:`InFlightRegistry`.
    """

    def __init__(
        self,
        tiers: Sequence[CacheTier],
        *,
        registry: Optional[InFlightRegistry] = None,
        tier_timeout_seconds: float = 2.0,
    ) -> None:
        self._tiers: Tuple[CacheTier, ...] = tuple(tiers)
        self._registry = registry or InFlightRegistry()
        self._tier_timeout = tier_timeout_seconds

    @property
    def tiers(self) -> Tuple[CacheTier, ...]:
        return self._tiers

    @property
    def registry(self) -> InFlightRegistry:
        return self._registry

    @property
    def vector_tier(self) -> Optional[CacheTier]:
        for tier in self._tiers:
            if tier.supports_vectors:
                return tier
        return None

    async def resolve(
        self,
        key: str,
        loader: Loader,
        *,
        decode: Callable[[Any], T] = _identity,
    ) -> Resolution[T]:
        """Resolve ``key`` or raise :class:`ExhaustedError`.

        Args:
            key: Cache key shared by every tier.
            loader: Coroutine factory fetching the payload from providers;
                returns ``None`` when nothing was found.
            decode: Turns a stored payload into the caller's value; a
                payload it rejects is treated as a malformed tier entry.
        """
        try:
            return await self._registry.run(key, lambda: self._resolve(key, loader, decode))
        except asyncio.TimeoutError as exc:
            raise ExhaustedError(key, f"Resolution of {key!r} timed out") from exc

    async def _resolve(
        self, key: str, loader: Loader, decode: Callable[[Any], T]
    ) -> Resolution[T]:
        self._trace(key, LookupState.DEDUPLICATING)
        for index, tier in enumerate(self._tiers):
            self._trace(key, LookupState.TIER_CHECK, tier=tier.name)
            started = time.perf_counter()
            try:
                entry = await asyncio.wait_for(tier.get(key), timeout=self._tier_timeout)
            except asyncio.TimeoutError:
                self._transient_failure(tier, key, "timeout")
                continue
            except Exception as exc:  # noqa: BLE001 - any tier error is a miss for that tier
                self._transient_failure(tier, key, exc)
                continue

            if entry is None:
                logger.debug(
                    "Tier miss",
                    extra={
                        "event": "tier.miss",
                        "tier": tier.name,
                        "cache_key": key,
                        "duration_ms": round((time.perf_counter() - started) * 1000.0, 2),
                    },
                )
                continue

            try:
                value = decode(entry.payload)
            except Exception as exc:  # noqa: BLE001 - undecodable payloads are malformed entries
                self._transient_failure(tier, key, f"malformed payload: {exc}")
                continue

            observability.increment_counter("tier.hit", tier=tier.name)
            logger.debug(
                "Tier hit",
                extra={"event": "tier.hit", "tier": tier.name, "cache_key": key},
            )
            await self._write(self._tiers[:index], key, self._promoted(entry))
            self._trace(key, LookupState.RESOLVED, tier=tier.name)
            return Resolution(key=key, value=value, tier=tier.name, entry=entry)

        try:
            payload = await loader()
        except ProviderUnavailable as exc:
            self._trace(key, LookupState.EXHAUSTED, reason=str(exc))
            raise ExhaustedError(key) from exc
        if payload is None:
            self._trace(key, LookupState.EXHAUSTED, reason="no provider result")
            raise ExhaustedError(key)

        value = decode(payload)
        entry = CacheEntry.fresh(payload)
        observability.increment_counter("tier.hit", tier=PROVIDER_TIER)
        await self._write(self._tiers, key, entry)
        self._trace(key, LookupState.RESOLVED, tier=PROVIDER_TIER)
        return Resolution(key=key, value=value, tier=PROVIDER_TIER, entry=entry)

    async def store(
        self,
        key: str,
        payload: Any,
        *,
        embedding: Optional[Sequence[float]] = None,
        embedding_is_placeholder: bool = False,
    ) -> None:
        """Write ``payload`` under ``key`` to every tier."""
        entry = CacheEntry.fresh(
            payload, embedding=embedding, embedding_is_placeholder=embedding_is_placeholder
        )
        await self._write(self._tiers, key, entry)

    @staticmethod
    def _promoted(entry: CacheEntry) -> CacheEntry:
        return CacheEntry.fresh(
            entry.payload,
            embedding=entry.embedding,
            embedding_is_placeholder=entry.embedding_is_placeholder,
        )

    async def _write(self, tiers: Sequence[CacheTier], key: str, entry: CacheEntry) -> None:
        if not tiers:
            return
        results = await asyncio.gather(
            *(asyncio.wait_for(tier.put(key, entry), timeout=self._tier_timeout) for tier in tiers),
            return_exceptions=True,
        )
        for tier, result in zip(tiers, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                self._transient_failure(tier, key, result, operation="put")

    def _transient_failure(
        self, tier: CacheTier, key: str, error: object, *, operation: str = "get"
    ) -> None:
        observability.increment_counter("tier.transient_failure", tier=tier.name)
        logger.warning(
            "Tier %s failed during %s; continuing",
            tier.name,
            operation,
            extra={
                "event": "tier.transient_failure",
                "tier": tier.name,
                "cache_key": key,
                "operation": operation,
                "error": str(error) or type(error).__name__,
            },
        )

    @staticmethod
    def _trace(key: str, state: LookupState, **details: object) -> None:
        level_extra = {"event": "lookup.state", "cache_key": key, "status": state.value}
        level_extra.update(details)
        if state is LookupState.EXHAUSTED:
            logger.info("Lookup exhausted every tier", extra=level_extra)
        else:
            logger.debug("Lookup state %s", state.value, extra=level_extra)


__all__ = ["PROVIDER_TIER", "Resolution", "TieredCacheChain"]
