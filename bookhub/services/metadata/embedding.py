"""Text embeddings for similarity search."""

from __future__ import annotations

import asyncio
import hashlib
import math
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

import aiohttp

from bookhub import logging_manager as log_mgr
from bookhub import observability
from bookhub.config_manager.constants import DEFAULT_EMBEDDING_DIMENSION

from .book import Book

logger = log_mgr.get_logger().getChild("services.metadata.embedding")

_ENDPOINTS = {"ollama": "/api/embeddings", "openai": "/v1/embeddings"}
_OPENAI_MODEL = "text-embedding-3-small"


@dataclass(frozen=True, slots=True)
class EmbeddingResult:
    vector: List[float]
    is_placeholder: bool


def build_embedding_text(book: Book) -> str:
    """Join title, authors, description and categories into one blob."""
    parts: List[str] = []
    if book.title:
        parts.append(book.title)
    parts.extend(author for author in book.authors if author)
    if book.description:
        parts.append(book.description)
    parts.extend(category for category in book.categories if category)
    return " ".join(part.strip() for part in parts if part and part.strip())


def placeholder_embedding(text: str, dimension: int = DEFAULT_EMBEDDING_DIMENSION) -> List[float]:
    """Deterministic vector derived from a hash of ``text``.

    This vector carries no semantic meaning. It only keeps the vector
    schema uniform for books embedded while no embedding service is
    reachable; such vectors are flagged and never used for nearest
    neighbour queries. Blank text yields the zero vector.
    """
    if not text:
        return [0.0] * dimension
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    seed = int.from_bytes(digest[:4], "big", signed=True)
    return [math.sin(seed * (index + 1) / 100.0) for index in range(dimension)]


def _fit_dimension(values: Sequence[float], dimension: int) -> List[float]:
    vector = [float(value) for value in values[:dimension]]
    if len(vector) < dimension:
        vector.extend([0.0] * (dimension - len(vector)))
    return vector


def parse_embedding_response(payload: Any) -> Optional[List[float]]:
    """Extract the vector from an Ollama or OpenAI style response."""
    if isinstance(payload, list):
        return [float(value) for value in payload] if payload else None
    if not isinstance(payload, dict):
        return None
    if isinstance(payload.get("embedding"), list):
        return [float(value) for value in payload["embedding"]]
    embeddings = payload.get("embeddings")
    if isinstance(embeddings, list) and embeddings and isinstance(embeddings[0], list):
        return [float(value) for value in embeddings[0]]
    data = payload.get("data")
    if isinstance(data, list) and data and isinstance(data[0], dict):
        vector = data[0].get("embedding")
        if isinstance(vector, list):
            return [float(value) for value in vector]
    return None


class EmbeddingService:
    """Calls an external embedding endpoint, degrading to placeholder vectors.

    Any failure (disabled service, transport error, unexpected reply)
    produces a placeholder :class:`EmbeddingResult`; embedding never
    fails a lookup.
    """

    def __init__(
        self,
        *,
        url: Optional[str] = None,
        enabled: bool = False,
        provider: str = "ollama",
        model: str = "nomic-embed-text",
        api_key: Optional[str] = None,
        dimension: int = DEFAULT_EMBEDDING_DIMENSION,
        timeout_seconds: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.url = url.rstrip("/") if url else None
        self.enabled = enabled and bool(self.url)
        self.provider = provider
        self.model = model
        self.dimension = dimension
        self._api_key = api_key
        self._timeout = timeout_seconds
        self._session = session
        self._owns_session = session is None

    def _request(self, text: str) -> tuple[str, dict, dict]:
        endpoint = f"{self.url}{_ENDPOINTS.get(self.provider, '')}"
        headers = {"User-Agent": "bookhub/1.0"}
        if self.provider == "openai":
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            model = self.model if self.model != "nomic-embed-text" else _OPENAI_MODEL
            return endpoint, {"model": model, "input": text}, headers
        return endpoint, {"model": self.model, "prompt": text}, headers

    async def embed_text(self, text: str) -> EmbeddingResult:
        if not self.enabled or not text:
            return EmbeddingResult(placeholder_embedding(text, self.dimension), True)

        endpoint, body, headers = self._request(text)
        if self._session is None:
            self._session = aiohttp.ClientSession()
        try:
            async with self._session.post(
                endpoint,
                json=body,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as response:
                response.raise_for_status()
                payload = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            return self._fallback(text, str(exc) or type(exc).__name__)

        vector = parse_embedding_response(payload)
        if not vector:
            return self._fallback(text, "unexpected response shape")
        return EmbeddingResult(_fit_dimension(vector, self.dimension), False)

    async def embed_book(self, book: Book) -> EmbeddingResult:
        text = build_embedding_text(book) or book.id
        return await self.embed_text(text)

    def _fallback(self, text: str, reason: str) -> EmbeddingResult:
        observability.increment_counter("embedding.fallback", provider=self.provider)
        logger.warning(
            "Embedding service failed; using placeholder vector",
            extra={"event": "embedding.fallback", "error": reason},
        )
        return EmbeddingResult(placeholder_embedding(text, self.dimension), True)

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None


__all__ = [
    "EmbeddingResult",
    "EmbeddingService",
    "build_embedding_text",
    "parse_embedding_response",
    "placeholder_embedding",
]
