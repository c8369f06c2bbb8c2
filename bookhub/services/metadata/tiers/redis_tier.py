"""Redis-backed cache tier."""

from __future__ import annotations

import json
from typing import Any, Optional

import redis.asyncio as redis_async
from redis.exceptions import RedisError

from ..errors import TierTransientFailure
from ..types import CacheEntry
from .base import CacheTier


class RedisCacheTier(CacheTier):
    """Stores serialized entries under ``<namespace>:<cache key>`` with an optional TTL."""

    name = "redis"

    def __init__(
        self,
        client: Any,
        *,
        namespace: str = "bookhub:cache",
        ttl_seconds: Optional[int] = None,
    ) -> None:
        self._client = client
        self._namespace = namespace
        self._ttl = ttl_seconds

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "RedisCacheTier":
        return cls(redis_async.Redis.from_url(url, decode_responses=True), **kwargs)

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def get(self, key: str) -> Optional[CacheEntry]:
        try:
            payload = await self._client.get(self._key(key))
        except RedisError as exc:
            raise TierTransientFailure(self.name, str(exc)) from exc
        if payload is None:
            return None
        try:
            return CacheEntry.from_dict(json.loads(payload)).touch()
        except (ValueError, TypeError) as exc:
            raise TierTransientFailure(self.name, f"malformed entry for {key!r}") from exc

    async def put(self, key: str, entry: CacheEntry) -> None:
        try:
            await self._client.set(self._key(key), json.dumps(entry.to_dict()), ex=self._ttl)
        except RedisError as exc:
            raise TierTransientFailure(self.name, str(exc)) from exc

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self._client.delete(self._key(key)))
        except RedisError as exc:
            raise TierTransientFailure(self.name, str(exc)) from exc

    async def close(self) -> None:
        await self._client.aclose()


__all__ = ["RedisCacheTier"]
