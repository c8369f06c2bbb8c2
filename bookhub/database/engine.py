"""SQLAlchemy engine and session helpers."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterator

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .base import Base


def create_engine_for_url(url: str) -> Engine:
    """Create an engine with pool options suited to the URL's dialect.

    SQLite connections are shared across the worker threads that run
    blocking queries, and in-memory databases use a single static
    connection so every session sees the same data.
    """
    options: Dict[str, Any] = {"echo": False}
    if url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url.rstrip("/").endswith("sqlite:"):
            options["poolclass"] = StaticPool
    else:
        options.update(pool_size=10, max_overflow=5, pool_pre_ping=True, pool_recycle=3600)
    return create_engine(url, **options)


def get_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_schema(engine: Engine) -> None:
    """Create any missing tables for the registered models."""
    from . import models  # noqa: F401 - registers the mapped tables

    Base.metadata.create_all(engine)
