"""Google Books API client."""

from __future__ import annotations

from typing import Any, Dict, Optional
from urllib.parse import quote

from bookhub import logging_manager as log_mgr
from bookhub.config_manager.constants import DEFAULT_GOOGLE_BOOKS_URL

from ..types import MetadataSource
from .base import BaseProviderClient

logger = log_mgr.get_logger().getChild("services.metadata.clients.google_books")

# Google rejects maxResults above this value.
MAX_RESULTS_PER_PAGE = 40


class GoogleBooksClient(BaseProviderClient):
    """Google Books ``volumes`` API client.

    An API key raises the quota but is not required.
    """

    name = MetadataSource.GOOGLE_BOOKS
    requires_api_key = False
    api_key_param = "key"

    def __init__(self, *, base_url: str = DEFAULT_GOOGLE_BOOKS_URL, **kwargs: Any) -> None:
        super().__init__(base_url=base_url, **kwargs)

    async def fetch_by_id(self, identifier: str) -> Optional[Dict[str, Any]]:
        payload = await self._get(f"{self.base_url}/volumes/{quote(identifier, safe='')}")
        if not isinstance(payload, dict) or "volumeInfo" not in payload:
            return None
        return payload

    async def search(
        self,
        query: str,
        *,
        start_index: int = 0,
        max_results: int = 20,
        language: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "q": query,
            "startIndex": max(0, start_index),
            "maxResults": max(1, min(max_results, MAX_RESULTS_PER_PAGE)),
            "langRestrict": language,
        }
        payload = await self._get(f"{self.base_url}/volumes", params=params)
        if not isinstance(payload, dict):
            return None
        logger.debug(
            "Google Books search returned %s items",
            len(payload.get("items") or []),
            extra={"event": "provider.search", "source": self.name.value},
        )
        return payload

    async def search_by_isbn(self, isbn: str) -> Optional[Dict[str, Any]]:
        return await self.search(f"isbn:{isbn}", max_results=MAX_RESULTS_PER_PAGE)


__all__ = ["GoogleBooksClient", "MAX_RESULTS_PER_PAGE"]
