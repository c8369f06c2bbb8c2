"""In-flight request deduplication keyed by cache key."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, TypeVar

from bookhub import logging_manager as log_mgr
from bookhub import observability

logger = log_mgr.get_logger().getChild("services.metadata.inflight")

T = TypeVar("T")


@dataclass(slots=True)
class _Registration:
    task: "asyncio.Task[Any]"
    started_at: float


class InFlightRegistry:
    """Collapses concurrent resolutions of the same key into one task.

    The first caller for a key registers a task running its factory; later
    callers await that same task and observe its result or its exception.
    Check-and-register happens without yielding to the event loop, so two
    callers can never both start a resolution. Waiters are shielded: a
    cancelled caller stops waiting but the shared task (and its
    registration) carries on for everyone else. The registration is
    removed when the task finishes; one older than ``timeout_seconds`` is
    considered stale and replaced by a fresh resolution.

    A registry belongs to the event loop that first uses it.
    """

    def __init__(
        self,
        timeout_seconds: float = 30.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._entries: Dict[str, _Registration] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def is_in_flight(self, key: str) -> bool:
        registration = self._entries.get(key)
        return registration is not None and not registration.task.done()

    def _register(
        self, key: str, factory: Callable[[], Awaitable[T]]
    ) -> Tuple["asyncio.Task[T]", bool]:
        now = self._clock()
        existing = self._entries.get(key)
        if existing is not None:
            if now - existing.started_at <= self.timeout_seconds:
                return existing.task, True
            logger.warning(
                "Replacing stale in-flight registration for %s",
                key,
                extra={"event": "inflight.stale", "cache_key": key},
            )
            observability.increment_counter("inflight.stale")

        task = asyncio.ensure_future(factory())
        self._entries[key] = _Registration(task=task, started_at=now)
        task.add_done_callback(lambda finished: self._release(key, finished))
        return task, False

    def _release(self, key: str, task: "asyncio.Task[Any]") -> None:
        registration: Optional[_Registration] = self._entries.get(key)
        if registration is not None and registration.task is task:
            del self._entries[key]
        if not task.cancelled():
            # Mark the exception as retrieved; waiters re-raise it themselves.
            task.exception()

    async def run(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        """Return the result of the single resolution for ``key``.

        Raises:
            asyncio.TimeoutError: If the shared resolution outlives the
                registry timeout.
            Exception: Whatever the shared resolution raised.
        """
        task, joined = self._register(key, factory)
        if joined:
            observability.increment_counter("inflight.joined")
            logger.debug(
                "Joining in-flight resolution for %s",
                key,
                extra={"event": "inflight.joined", "cache_key": key},
            )
        return await asyncio.wait_for(asyncio.shield(task), timeout=self.timeout_seconds)


__all__ = ["InFlightRegistry"]
