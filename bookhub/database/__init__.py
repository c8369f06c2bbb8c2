"""SQLAlchemy database layer for bookhub.

Provides the engine factory, session helpers, and declarative base used by
the relational cache tier.
"""

from .base import Base
from .engine import create_engine_for_url, create_schema, get_session_factory, session_scope

__all__ = [
    "Base",
    "create_engine_for_url",
    "create_schema",
    "get_session_factory",
    "session_scope",
]
