"""Cache tier contract and the in-process tier."""

from __future__ import annotations

import asyncio
import copy
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from ..types import CacheEntry


@dataclass(frozen=True, slots=True)
class VectorMatch:
    key: str
    entry: CacheEntry
    distance: float


def cosine_distance(left: Sequence[float], right: Sequence[float]) -> float:
    """Return ``1 - cosine similarity``; mismatched or zero vectors are maximally distant."""
    if len(left) != len(right) or not left:
        return 2.0
    dot = sum(a * b for a, b in zip(left, right))
    norm_left = math.sqrt(sum(a * a for a in left))
    norm_right = math.sqrt(sum(b * b for b in right))
    if norm_left == 0.0 or norm_right == 0.0:
        return 2.0
    return 1.0 - dot / (norm_left * norm_right)


def rank_by_distance(
    query: Sequence[float],
    candidates: Iterable[tuple[str, CacheEntry]],
    k: int,
    exclude_keys: Iterable[str] = (),
) -> List[VectorMatch]:
    """Nearest ``k`` candidates by cosine distance, skipping placeholder vectors."""
    excluded = set(exclude_keys)
    matches = [
        VectorMatch(key, entry, cosine_distance(query, entry.embedding))
        for key, entry in candidates
        if key not in excluded and entry.embedding and not entry.embedding_is_placeholder
    ]
    matches.sort(key=lambda match: (match.distance, match.key))
    return matches[: max(0, k)]


class CacheTier(ABC):
    """One storage layer of the lookup chain.

    ``get`` returns ``None`` for a miss and raises (typically
    :class:`~bookhub.services.metadata.errors.TierTransientFailure`) for
    failures; the chain treats both as "try the next tier".
    """

    name: str = "tier"
    supports_vectors: bool = False

    @abstractmethod
    async def get(self, key: str) -> Optional[CacheEntry]:
        ...

    @abstractmethod
    async def put(self, key: str, entry: CacheEntry) -> None:
        ...

    async def knn(
        self, embedding: Sequence[float], k: int, *, exclude_keys: Iterable[str] = ()
    ) -> List[VectorMatch]:
        raise NotImplementedError(f"{self.name} tier does not support vector search")

    async def close(self) -> None:
        return None


class InMemoryCacheTier(CacheTier):
    """Dictionary-backed, vector-capable tier for single-process use."""

    supports_vectors = True

    def __init__(self, name: str = "memory") -> None:
        self.name = name
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[CacheEntry]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            entry.touch()
            return copy.deepcopy(entry)

    async def put(self, key: str, entry: CacheEntry) -> None:
        async with self._lock:
            existing = self._entries.get(key)
            stored = copy.deepcopy(entry)
            if existing is not None:
                stored.created_at = existing.created_at
                stored.access_count = max(stored.access_count, existing.access_count)
                if stored.embedding is None:
                    stored.embedding = existing.embedding
                    stored.embedding_is_placeholder = existing.embedding_is_placeholder
            self._entries[key] = stored

    async def knn(
        self, embedding: Sequence[float], k: int, *, exclude_keys: Iterable[str] = ()
    ) -> List[VectorMatch]:
        async with self._lock:
            snapshot = [(key, copy.deepcopy(entry)) for key, entry in self._entries.items()]
        return rank_by_distance(embedding, snapshot, k, exclude_keys)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


__all__ = [
    "CacheTier",
    "InMemoryCacheTier",
    "VectorMatch",
    "cosine_distance",
    "rank_by_distance",
]
