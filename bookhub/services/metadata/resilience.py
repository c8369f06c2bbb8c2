"""Per-provider rate limiting and circuit breaking."""

from __future__ import annotations

import asyncio
import collections
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, Optional

from bookhub import logging_manager as log_mgr
from bookhub import observability

from .errors import ProviderRateLimited

logger = log_mgr.get_logger().getChild("services.metadata.resilience")

Clock = Callable[[], float]


class RateLimiter:
    """Budget of requests per second and/or per minute for one provider.

    ``acquire`` waits for the next free slot when that is at most
    ``max_wait`` seconds away and raises :class:`ProviderRateLimited`
    otherwise, so an exhausted budget surfaces as an immediate miss.
    """

    def __init__(
        self,
        name: str,
        *,
        requests_per_second: Optional[float] = None,
        requests_per_minute: Optional[int] = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self.name = name
        self._interval = 1.0 / requests_per_second if requests_per_second else 0.0
        self._per_minute = requests_per_minute or 0
        self._clock = clock
        self._last_request: Optional[float] = None
        self._window: Deque[float] = collections.deque()
        self._lock = asyncio.Lock()

    def _delay(self, now: float) -> float:
        delay = 0.0
        if self._interval and self._last_request is not None:
            delay = max(delay, self._last_request + self._interval - now)
        if self._per_minute:
            while self._window and now - self._window[0] >= 60.0:
                self._window.popleft()
            if len(self._window) >= self._per_minute:
                delay = max(delay, self._window[0] + 60.0 - now)
        return delay

    def _record(self, now: float) -> None:
        self._last_request = now
        if self._per_minute:
            self._window.append(now)

    def try_acquire(self) -> bool:
        """Take a slot only if one is free right now."""
        now = self._clock()
        if self._delay(now) > 0:
            return False
        self._record(now)
        return True

    async def acquire(self, max_wait: float = 0.0) -> None:
        async with self._lock:
            delay = self._delay(self._clock())
            if delay > max_wait:
                observability.increment_counter("provider.rate_limited", provider=self.name)
                raise ProviderRateLimited(
                    self.name, f"local request budget exhausted (next slot in {delay:.2f}s)"
                )
            if delay > 0:
                await asyncio.sleep(delay)
            self._record(self._clock())


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True, slots=True)
class BreakerStatus:
    """Snapshot of a breaker for admin and health callers."""

    name: str
    state: CircuitState
    consecutive_failures: int
    opened_at: Optional[datetime]
    open_until: Optional[datetime]
    last_reason: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "consecutive_failures": self.consecutive_failures,
            "opened_at": self.opened_at.isoformat() if self.opened_at else None,
            "open_until": self.open_until.isoformat() if self.open_until else None,
            "last_reason": self.last_reason,
        }


def next_utc_midnight(now: float) -> float:
    current = datetime.fromtimestamp(now, tz=timezone.utc)
    midnight = (current + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.timestamp()


class CircuitBreaker:
    """Stops calls to a provider after repeated failures or a rate-limit reply.

    Generic failures open the circuit after ``failure_threshold``
    consecutive occurrences; an upstream rate-limit response opens it at
    once. The circuit stays open for ``cooldown_seconds`` (until the next
    UTC midnight when that is ``0``), then lets a single trial call
    through in the half-open state.
    """

    def __init__(
        self,
        name: str,
        *,
        failure_threshold: int = 5,
        cooldown_seconds: float = 0.0,
        clock: Clock = time.time,
    ) -> None:
        self.name = name
        self.failure_threshold = max(1, failure_threshold)
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at: Optional[float] = None
        self._open_until: Optional[float] = None
        self._trial_in_flight = False
        self._last_reason: Optional[str] = None

    @property
    def state(self) -> CircuitState:
        self._maybe_half_open()
        return self._state

    def _maybe_half_open(self) -> None:
        if (
            self._state is CircuitState.OPEN
            and self._open_until is not None
            and self._clock() >= self._open_until
        ):
            self._state = CircuitState.HALF_OPEN
            self._trial_in_flight = False
            logger.info(
                "Circuit breaker for %s is half-open",
                self.name,
                extra={"event": "provider.circuit_half_open", "source": self.name},
            )

    def allow_request(self) -> bool:
        self._maybe_half_open()
        if self._state is CircuitState.CLOSED:
            return True
        if self._state is CircuitState.HALF_OPEN and not self._trial_in_flight:
            self._trial_in_flight = True
            return True
        return False

    def release_trial(self) -> None:
        """Free a half-open trial slot whose call ended without an outcome."""
        self._trial_in_flight = False

    def record_success(self) -> None:
        self._failures = 0
        self._trial_in_flight = False
        if self._state is not CircuitState.CLOSED:
            self._state = CircuitState.CLOSED
            self._opened_at = None
            self._open_until = None
            logger.warning(
                "Circuit breaker for %s closed",
                self.name,
                extra={"event": "provider.circuit_closed", "source": self.name},
            )

    def record_failure(self, reason: str = "failure") -> None:
        self._failures += 1
        self._trial_in_flight = False
        if self._state is CircuitState.HALF_OPEN or self._failures >= self.failure_threshold:
            self._open(reason)

    def record_rate_limited(self) -> None:
        self._failures += 1
        self._trial_in_flight = False
        self._open("rate_limited")

    def _open(self, reason: str) -> None:
        now = self._clock()
        self._state = CircuitState.OPEN
        self._opened_at = now
        if self.cooldown_seconds > 0:
            self._open_until = now + self.cooldown_seconds
        else:
            self._open_until = next_utc_midnight(now)
        self._last_reason = reason
        observability.increment_counter("provider.circuit_opened", provider=self.name)
        logger.warning(
            "Circuit breaker for %s opened (%s)",
            self.name,
            reason,
            extra={
                "event": "provider.circuit_opened",
                "source": self.name,
                "status": reason,
                "open_until": datetime.fromtimestamp(self._open_until, tz=timezone.utc).isoformat(),
            },
        )

    def status(self) -> BreakerStatus:
        state = self.state

        def _as_datetime(value: Optional[float]) -> Optional[datetime]:
            return datetime.fromtimestamp(value, tz=timezone.utc) if value is not None else None

        return BreakerStatus(
            name=self.name,
            state=state,
            consecutive_failures=self._failures,
            opened_at=_as_datetime(self._opened_at),
            open_until=_as_datetime(self._open_until),
            last_reason=self._last_reason,
        )

    def reset(self) -> None:
        """Close the circuit and forget failures (manual override)."""
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = None
        self._open_until = None
        self._trial_in_flight = False
        logger.warning(
            "Circuit breaker for %s reset",
            self.name,
            extra={"event": "provider.circuit_reset", "source": self.name},
        )


__all__ = [
    "BreakerStatus",
    "CircuitBreaker",
    "CircuitState",
    "RateLimiter",
    "next_utc_midnight",
]
