"""Book cache rows: serialized payloads, access statistics and embeddings."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from ..base import Base


class BookCacheEntryModel(Base):
    """One cached lookup result keyed by its cache key."""

    __tablename__ = "book_cache_entries"

    cache_key: Mapped[str] = mapped_column(String(512), primary_key=True)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    embedding: Mapped[Optional[List[float]]] = mapped_column(
        JSON(none_as_null=True), nullable=True
    )
    embedding_is_placeholder: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    last_accessed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    access_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("idx_book_cache_last_accessed", "last_accessed_at"),
        Index("idx_book_cache_placeholder", "embedding_is_placeholder"),
    )
