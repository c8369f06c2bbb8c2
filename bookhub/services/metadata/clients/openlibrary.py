"""OpenLibrary API client."""

from __future__ import annotations

import re
from typing import Any, Dict, List, Mapping, Optional

from bookhub import logging_manager as log_mgr
from bookhub.config_manager.constants import DEFAULT_OPENLIBRARY_URL

from ..text import looks_like_isbn, normalize_isbn
from ..types import MetadataSource
from .base import BaseProviderClient

logger = log_mgr.get_logger().getChild("services.metadata.clients.openlibrary")

_EDITION_ID = re.compile(r"^OL\d+M$", re.IGNORECASE)
_WORK_ID = re.compile(r"^OL\d+W$", re.IGNORECASE)


class OpenLibraryClient(BaseProviderClient):
    """OpenLibrary books, works and search API client (no key required)."""

    name = MetadataSource.OPENLIBRARY
    requires_api_key = False

    def __init__(self, *, base_url: str = DEFAULT_OPENLIBRARY_URL, **kwargs: Any) -> None:
        super().__init__(base_url=base_url, **kwargs)

    async def _books_api(self, bibkey: str) -> Optional[Dict[str, Any]]:
        payload = await self._get(
            f"{self.base_url}/api/books",
            params={"bibkeys": bibkey, "format": "json", "jscmd": "data"},
        )
        if not isinstance(payload, dict):
            return None
        record = payload.get(bibkey)
        return record if isinstance(record, dict) else None

    async def fetch_by_id(self, identifier: str) -> Optional[Dict[str, Any]]:
        """Fetch by ISBN, edition id (``OL...M``) or work id (``OL...W``)."""
        text = identifier.strip()
        if looks_like_isbn(text):
            return await self._books_api(f"ISBN:{normalize_isbn(text)}")
        olid = text.rstrip("/").rsplit("/", 1)[-1]
        if _EDITION_ID.match(olid):
            return await self._books_api(f"OLID:{olid.upper()}")
        if _WORK_ID.match(olid):
            payload = await self._get(f"{self.base_url}/works/{olid.upper()}.json")
            return payload if isinstance(payload, dict) else None
        return None

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
            "offset": max(0, start_index),
            "limit": max(1, max_results),
            "lang": language,
        }
        payload = await self._get(f"{self.base_url}/search.json", params=params)
        return payload if isinstance(payload, dict) else None

    def extract_items(self, payload: Optional[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
        if not isinstance(payload, Mapping):
            return []
        docs = payload.get("docs")
        return [doc for doc in docs if isinstance(doc, Mapping)] if isinstance(docs, list) else []


__all__ = ["OpenLibraryClient"]
