"""Lookup of configured provider clients by source."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from ..types import MetadataSource
from .base import BaseProviderClient


class ProviderRegistry:
    """Holds at most one client per :class:`MetadataSource`."""

    def __init__(self, clients: Iterable[BaseProviderClient] = ()) -> None:
        self._clients: Dict[MetadataSource, BaseProviderClient] = {}
        for client in clients:
            self.register(client)

    def register(self, client: BaseProviderClient) -> None:
        self._clients[client.name] = client

    def get(self, source: MetadataSource) -> Optional[BaseProviderClient]:
        """Return the client for ``source`` when it is registered and usable."""
        client = self._clients.get(source)
        if client is None or not client.is_available:
            return None
        return client

    def available(self) -> List[BaseProviderClient]:
        return [client for client in self._clients.values() if client.is_available]

    def statuses(self) -> Dict[str, Dict[str, Any]]:
        return {source.value: client.status() for source, client in self._clients.items()}

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()

    def __contains__(self, source: object) -> bool:
        return source in self._clients


__all__ = ["ProviderRegistry"]
