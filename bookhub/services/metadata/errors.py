"""Exceptions and conflict records raised or collected by book lookups."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple


class BookLookupError(Exception):
    """Base class for every book lookup failure."""


class ValidationError(BookLookupError, ValueError):
    """Raised for malformed identifiers, ISBNs or queries before any I/O."""


class TierTransientFailure(BookLookupError):
    """A single cache tier failed (timeout, bad payload, connectivity)."""

    def __init__(self, tier: str, message: str) -> None:
        super().__init__(f"{tier}: {message}")
        self.tier = tier


class ProviderUnavailable(BookLookupError):
    """An external provider could not serve the request."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ProviderRateLimited(ProviderUnavailable):
    """The provider's request budget is exhausted (locally or via HTTP 429)."""


class CircuitOpenError(ProviderUnavailable):
    """The provider's circuit breaker is open and the call was skipped."""


class ExhaustedError(BookLookupError):
    """Every tier and every provider missed or failed for a cache key."""

    def __init__(self, cache_key: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"No tier or provider resolved {cache_key!r}")
        self.cache_key = cache_key


@dataclass(frozen=True, slots=True)
class AggregationConflict:
    """Record of a field conflict resolved by the merge policy."""

    field: str
    chosen: object
    candidates: Tuple[object, ...]
    reason: str


__all__ = [
    "AggregationConflict",
    "BookLookupError",
    "CircuitOpenError",
    "ExhaustedError",
    "ProviderRateLimited",
    "ProviderUnavailable",
    "TierTransientFailure",
    "ValidationError",
]
