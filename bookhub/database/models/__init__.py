"""SQLAlchemy models; import all to register with Base.metadata."""

from .book_cache import BookCacheEntryModel

__all__ = ["BookCacheEntryModel"]
