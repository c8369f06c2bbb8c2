"""New York Times Books API client (best-seller lists)."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote

from bookhub.config_manager.constants import DEFAULT_NYT_URL

from ..types import MetadataSource
from .base import BaseProviderClient


_LIST_FIELDS = ("list_name", "list_name_encoded", "display_name")


def _list_fields(listing: Mapping[str, Any]) -> Dict[str, Any]:
    return {field: listing[field] for field in _LIST_FIELDS if listing.get(field)}


class NytBooksClient(BaseProviderClient):
    """Best-seller list client; every call needs an API key."""

    name = MetadataSource.NYT
    requires_api_key = True
    api_key_param = "api-key"

    def __init__(self, *, base_url: str = DEFAULT_NYT_URL, **kwargs: Any) -> None:
        super().__init__(base_url=base_url, **kwargs)

    async def fetch_by_id(self, identifier: str) -> Optional[Dict[str, Any]]:
        """Fetch the current edition of the list named ``identifier``."""
        payload = await self._get(
            f"{self.base_url}/lists/current/{quote(identifier.strip(), safe='')}.json"
        )
        return payload if isinstance(payload, dict) else None

    async def overview(self, published_date: Optional[str] = None) -> Optional[Dict[str, Any]]:
        payload = await self._get(
            f"{self.base_url}/lists/overview.json", params={"published_date": published_date}
        )
        return payload if isinstance(payload, dict) else None

    async def search(
        self,
        query: str,
        *,
        start_index: int = 0,
        max_results: int = 20,
        language: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        # The history endpoint pages in steps of 20 and ignores language.
        params = {"title": query, "offset": (max(0, start_index) // 20) * 20}
        payload = await self._get(f"{self.base_url}/lists/best-sellers/history.json", params=params)
        return payload if isinstance(payload, dict) else None

    def extract_items(self, payload: Optional[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
        """Flatten list, overview and history payloads into book entries."""
        if not isinstance(payload, Mapping):
            return []
        results = payload.get("results")
        if isinstance(results, list):
            return [item for item in results if isinstance(item, Mapping)]
        if not isinstance(results, Mapping):
            return []
        entries: List[Mapping[str, Any]] = []
        if isinstance(results.get("books"), list):
            for book in results["books"]:
                if isinstance(book, Mapping):
                    entries.append({**_list_fields(results), **book})
        for listing in results.get("lists") or []:
            if not isinstance(listing, Mapping):
                continue
            for book in listing.get("books") or []:
                if isinstance(book, Mapping):
                    entries.append({**_list_fields(listing), **book})
        return entries


__all__ = ["NytBooksClient"]
