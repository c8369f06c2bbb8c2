"""Relational (and vector) cache tier backed by SQLAlchemy."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from bookhub import logging_manager as log_mgr
from bookhub.database.engine import session_scope
from bookhub.database.models import BookCacheEntryModel

from ..errors import TierTransientFailure
from ..types import CacheEntry
from .base import CacheTier, VectorMatch, rank_by_distance

logger = log_mgr.get_logger().getChild("services.metadata.tiers.database")


def _aware(value: Optional[datetime]) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _row_to_entry(row: BookCacheEntryModel) -> CacheEntry:
    return CacheEntry(
        payload=json.loads(row.payload),
        created_at=_aware(row.created_at),
        last_accessed_at=_aware(row.last_accessed_at),
        access_count=row.access_count or 0,
        embedding=list(row.embedding) if row.embedding else None,
        embedding_is_placeholder=bool(row.embedding_is_placeholder),
    )


class DatabaseCacheTier(CacheTier):
    """Cache rows keyed by cache key, with access statistics and embeddings.

    Every hit bumps ``last_accessed_at`` and ``access_count``. Queries run
    in worker threads so the event loop never blocks on the database.
    """

    name = "database"
    supports_vectors = True

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def _read(self, key: str) -> Optional[CacheEntry]:
        with session_scope(self._session_factory) as session:
            row = session.get(BookCacheEntryModel, key)
            if row is None:
                return None
            row.last_accessed_at = datetime.now(timezone.utc)
            row.access_count = (row.access_count or 0) + 1
            session.flush()
            return _row_to_entry(row)

    def _write(self, key: str, entry: CacheEntry) -> None:
        payload = json.dumps(entry.payload, ensure_ascii=False)
        now = datetime.now(timezone.utc)
        with session_scope(self._session_factory) as session:
            row = session.get(BookCacheEntryModel, key)
            if row is None:
                row = BookCacheEntryModel(
                    cache_key=key,
                    payload=payload,
                    created_at=now,
                    last_accessed_at=now,
                    access_count=0,
                    embedding=entry.embedding,
                    embedding_is_placeholder=entry.embedding_is_placeholder,
                )
                session.add(row)
                return
            row.payload = payload
            if entry.embedding is not None:
                row.embedding = list(entry.embedding)
                row.embedding_is_placeholder = entry.embedding_is_placeholder

    def _nearest(
        self, embedding: Sequence[float], k: int, exclude_keys: Sequence[str]
    ) -> List[VectorMatch]:
        with session_scope(self._session_factory) as session:
            rows = session.scalars(
                select(BookCacheEntryModel).where(
                    BookCacheEntryModel.embedding.is_not(None),
                    BookCacheEntryModel.embedding_is_placeholder.is_(False),
                )
            ).all()
            candidates = [(row.cache_key, _row_to_entry(row)) for row in rows]
        return rank_by_distance(embedding, candidates, k, exclude_keys)

    async def _run(self, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except SQLAlchemyError as exc:
            raise TierTransientFailure(self.name, str(exc)) from exc
        except (ValueError, TypeError) as exc:
            raise TierTransientFailure(self.name, f"malformed row: {exc}") from exc

    async def get(self, key: str) -> Optional[CacheEntry]:
        return await self._run(self._read, key)

    async def put(self, key: str, entry: CacheEntry) -> None:
        await self._run(self._write, key, entry)

    async def knn(
        self, embedding: Sequence[float], k: int, *, exclude_keys: Iterable[str] = ()
    ) -> List[VectorMatch]:
        return await self._run(self._nearest, list(embedding), k, list(exclude_keys))


__all__ = ["DatabaseCacheTier"]
