"""Bounded log of recently viewed books."""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Deque, List, Protocol

from bookhub import logging_manager as log_mgr
from bookhub.config_manager.constants import DEFAULT_RECENTLY_VIEWED_CAPACITY

from .book import Book

logger = log_mgr.get_logger().getChild("services.metadata.recently_viewed")


class RecentlyViewedLog(Protocol):
    """Collaborator fed by successful lookups."""

    async def record(self, book: Book) -> None:
        ...

    async def recent(self, limit: int | None = None) -> List[Book]:
        ...


class BoundedRecentlyViewedLog:
    """Most recent first; the oldest view is evicted once ``capacity`` is reached.

    Viewing a book that is already in the log moves it to the front.
    """

    def __init__(self, capacity: int = DEFAULT_RECENTLY_VIEWED_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._books: Deque[Book] = deque()
        self._lock = asyncio.Lock()

    async def record(self, book: Book) -> None:
        async with self._lock:
            try:
                self._books.remove(book)
            except ValueError:
                pass
            self._books.appendleft(book)
            while len(self._books) > self.capacity:
                evicted = self._books.pop()
                logger.debug(
                    "Evicted %s from recently viewed",
                    evicted.id,
                    extra={"event": "recently_viewed.evicted"},
                )

    async def recent(self, limit: int | None = None) -> List[Book]:
        async with self._lock:
            books = list(self._books)
        return books if limit is None else books[: max(0, limit)]

    async def clear(self) -> None:
        async with self._lock:
            self._books.clear()

    def __len__(self) -> int:
        return len(self._books)


__all__ = ["BoundedRecentlyViewedLog", "RecentlyViewedLog"]
