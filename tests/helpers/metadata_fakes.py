"""In-memory provider clients, sessions and tiers for book lookup tests."""

import asyncio
from typing import Any, Dict, Iterable, List, Mapping, Optional

import aiohttp

from bookhub.services.metadata.clients import (
    GoogleBooksClient,
    NytBooksClient,
    OpenLibraryClient,
)
from bookhub.services.metadata.tiers import CacheTier

DUNE_ISBN13 = "9780441172719"
DUNE_ISBN10 = "0441172717"


class FakeClock:
    """Manually advanced clock for rate limiters and breakers."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def google_volume(
    volume_id: str = "abc",
    title: str = "Dune",
    *,
    authors: Iterable[str] = ("Frank Herbert",),
    categories: Iterable[str] = ("Fiction",),
    description: Optional[str] = "A desert planet and its spice.",
    isbn13: Optional[str] = DUNE_ISBN13,
    isbn10: Optional[str] = DUNE_ISBN10,
    thumbnail: Optional[str] = "http://books.google.com/books/content?id=abc&img=1",
) -> Dict[str, Any]:
    identifiers = []
    if isbn13:
        identifiers.append({"type": "ISBN_13", "identifier": isbn13})
    if isbn10:
        identifiers.append({"type": "ISBN_10", "identifier": isbn10})
    info: Dict[str, Any] = {
        "title": title,
        "authors": list(authors),
        "categories": list(categories),
        "industryIdentifiers": identifiers,
        "publisher": "Chilton Books",
        "publishedDate": "1965-08-01",
        "pageCount": 412,
        "language": "en",
    }
    if description:
        info["description"] = description
    if thumbnail:
        info["imageLinks"] = {"thumbnail": thumbnail}
    return {"kind": "books#volume", "id": volume_id, "volumeInfo": info}


class FakeResponse:
    def __init__(self, status: int = 200, payload: Any = None) -> None:
        self.status = status
        self._payload = payload

    async def json(self, content_type: Optional[str] = None) -> Any:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload

    def raise_for_status(self) -> None:
        if self.status >= 400:
            raise aiohttp.ClientError(f"HTTP {self.status}")

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, *exc_info: Any) -> bool:
        return False


class FakeSession:
    """Stands in for ``aiohttp.ClientSession``; replies are consumed in order."""

    def __init__(self, replies: Iterable[Any] = ()) -> None:
        self.replies: List[Any] = list(replies)
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def _next(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        reply = self.replies.pop(0) if self.replies else FakeResponse(404, None)
        if isinstance(reply, BaseException):
            raise reply
        return reply

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._next("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._next("POST", url, **kwargs)

    async def close(self) -> None:
        self.closed = True


class FakeGoogleClient(GoogleBooksClient):
    """Google client answering from memory and counting calls."""

    def __init__(
        self,
        volumes: Optional[Mapping[str, Dict[str, Any]]] = None,
        search_items: Optional[Mapping[str, List[Dict[str, Any]]]] = None,
        *,
        delay: float = 0.0,
        error: Optional[Exception] = None,
    ) -> None:
        super().__init__()
        self.volumes = dict(volumes or {})
        self.search_items = dict(search_items or {})
        self.delay = delay
        self.error = error
        self.fetch_calls: List[str] = []
        self.search_calls: List[Dict[str, Any]] = []

    async def fetch_by_id(self, identifier: str) -> Optional[Dict[str, Any]]:
        self.fetch_calls.append(identifier)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.volumes.get(identifier)

    async def search(
        self,
        query: str,
        *,
        start_index: int = 0,
        max_results: int = 20,
        language: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        self.search_calls.append(
            {"query": query, "start_index": start_index, "max_results": max_results, "language": language}
        )
        if self.error is not None:
            raise self.error
        items = self.search_items.get(query, [])
        return {"totalItems": len(items), "items": items[start_index: start_index + max_results]}


class FakeOpenLibraryClient(OpenLibraryClient):
    def __init__(
        self,
        records: Optional[Mapping[str, Dict[str, Any]]] = None,
        docs: Optional[Mapping[str, List[Dict[str, Any]]]] = None,
    ) -> None:
        super().__init__()
        self.records = dict(records or {})
        self.docs = dict(docs or {})
        self.fetch_calls: List[str] = []
        self.search_calls: List[str] = []

    async def fetch_by_id(self, identifier: str) -> Optional[Dict[str, Any]]:
        self.fetch_calls.append(identifier)
        return self.records.get(identifier)

    async def search(
        self,
        query: str,
        *,
        start_index: int = 0,
        max_results: int = 20,
        language: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        self.search_calls.append(query)
        docs = self.docs.get(query, [])
        return {"numFound": len(docs), "docs": docs[start_index: start_index + max_results]}


class FakeNytClient(NytBooksClient):
    def __init__(self, lists: Optional[Mapping[str, Dict[str, Any]]] = None) -> None:
        super().__init__(api_key="test-key")
        self.lists = dict(lists or {})

    async def fetch_by_id(self, identifier: str) -> Optional[Dict[str, Any]]:
        return self.lists.get(identifier)


class FailingTier(CacheTier):
    """Tier whose every call raises."""

    def __init__(self, name: str = "broken") -> None:
        self.name = name
        self.get_calls = 0

    async def get(self, key: str):
        self.get_calls += 1
        raise ConnectionError("tier offline")

    async def put(self, key: str, entry) -> None:
        raise ConnectionError("tier offline")

