"""Base class for book data provider clients."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional

import aiohttp

from bookhub import logging_manager as log_mgr
from bookhub import observability

from ..errors import CircuitOpenError, ProviderRateLimited, ProviderUnavailable
from ..mappers import MAPPERS, SourceMapper
from ..resilience import CircuitBreaker, RateLimiter
from ..types import MetadataSource

logger = log_mgr.get_logger().getChild("services.metadata.clients")


class BaseProviderClient(ABC):
    """Abstract base class for provider clients.

    Every request passes the circuit breaker and the rate limiter before
    it leaves the process, and carries an explicit timeout. Outcomes map
    onto the lookup error taxonomy:

    - HTTP 429 opens the breaker and raises :class:`ProviderRateLimited`;
    - 404 and other 4xx replies return ``None`` (nothing to find);
    - 5xx, transport errors, timeouts and undecodable bodies raise
      :class:`ProviderUnavailable` and count as breaker failures.
    """

    # Subclasses must set these class attributes
    name: MetadataSource
    requires_api_key: bool = False
    api_key_param: str = "key"

    def __init__(
        self,
        *,
        base_url: str,
        session: Optional[aiohttp.ClientSession] = None,
        api_key: Optional[str] = None,
        timeout_seconds: float = 10.0,
        rate_limiter: Optional[RateLimiter] = None,
        breaker: Optional[CircuitBreaker] = None,
        rate_limit_wait_seconds: float = 1.0,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Provider API root, without a trailing slash.
            session: Optional shared aiohttp session; one is created lazily
                (and owned) otherwise.
            api_key: API key for providers that require authentication.
            timeout_seconds: Total timeout for each request.
            rate_limiter: Request budget; unlimited when omitted.
            breaker: Circuit breaker; a default one is created when omitted.
            rate_limit_wait_seconds: Longest wait for a rate-limit slot
                before the request is rejected.
        """
        self.base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._api_key = api_key
        self._timeout = timeout_seconds
        self.rate_limiter = rate_limiter or RateLimiter(self.name.value)
        self.breaker = breaker or CircuitBreaker(self.name.value)
        self._rate_limit_wait = rate_limit_wait_seconds

    @property
    def is_available(self) -> bool:
        """Return True if this client can be used."""
        if self.requires_api_key and not self._api_key:
            return False
        return True

    @property
    def mapper(self) -> SourceMapper:
        return MAPPERS[self.name]

    @abstractmethod
    async def search(
        self,
        query: str,
        *,
        start_index: int = 0,
        max_results: int = 20,
        language: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Run a provider search and return its raw JSON payload."""
        ...

    @abstractmethod
    async def fetch_by_id(self, identifier: str) -> Optional[Dict[str, Any]]:
        """Fetch a single provider record by its native identifier."""
        ...

    def extract_items(self, payload: Optional[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
        """Return the per-book records contained in a search payload."""
        if not isinstance(payload, Mapping):
            return []
        items = payload.get("items")
        return [item for item in items if isinstance(item, Mapping)] if isinstance(items, list) else []

    def status(self) -> Dict[str, Any]:
        return {
            "source": self.name.value,
            "available": self.is_available,
            "breaker": self.breaker.status().to_dict(),
        }

    def reset_breaker(self) -> None:
        self.breaker.reset()

    def _session_or_create(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(limit=50),
            )
            self._owns_session = True
        return self._session

    def _with_api_key(self, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        merged = {key: value for key, value in (params or {}).items() if value is not None}
        if self._api_key:
            merged[self.api_key_param] = self._api_key
        return merged

    async def _get(
        self,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
    ) -> Optional[Any]:
        """GET ``url`` and return the decoded JSON body, or ``None`` for misses."""
        provider = self.name.value
        if not self.is_available:
            raise ProviderUnavailable(provider, "API key not configured")
        if not self.breaker.allow_request():
            observability.increment_counter("provider.circuit_skipped", provider=provider)
            logger.debug(
                "Skipping %s request; circuit open",
                provider,
                extra={"event": "provider.skipped", "source": provider, "status": "circuit_open"},
            )
            raise CircuitOpenError(provider, "circuit breaker is open")

        try:
            return await self._send(url, params)
        finally:
            # Rate limiting or cancellation must not strand a half-open trial.
            self.breaker.release_trial()

    async def _send(self, url: str, params: Optional[Dict[str, Any]]) -> Optional[Any]:
        provider = self.name.value
        await self.rate_limiter.acquire(self._rate_limit_wait)

        session = self._session_or_create()
        try:
            async with session.get(
                url,
                params=self._with_api_key(params),
                headers={"Accept": "application/json"},
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as response:
                status = response.status
                if status == 429:
                    self.breaker.record_rate_limited()
                    raise ProviderRateLimited(provider, "HTTP 429 from provider")
                if status >= 500:
                    self.breaker.record_failure(f"http_{status}")
                    raise ProviderUnavailable(provider, f"HTTP {status} from provider")
                if status != 200:
                    self.breaker.record_success()
                    logger.debug(
                        "%s returned HTTP %s for %s",
                        provider,
                        status,
                        url,
                        extra={"event": "provider.miss", "source": provider, "status": status},
                    )
                    return None
                payload = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            self.breaker.record_failure(type(exc).__name__)
            logger.warning(
                "%s request failed: %s",
                provider,
                exc,
                extra={"event": "provider.error", "source": provider},
            )
            raise ProviderUnavailable(provider, str(exc) or type(exc).__name__) from exc
        except ValueError as exc:
            self.breaker.record_failure("invalid_json")
            raise ProviderUnavailable(provider, "response body is not valid JSON") from exc

        self.breaker.record_success()
        return payload

    async def close(self) -> None:
        """Release resources."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "BaseProviderClient":
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()


__all__ = ["BaseProviderClient"]
