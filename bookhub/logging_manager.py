"""Structured JSON logging for bookhub.

Every module logs through a child of the ``bookhub`` logger::

    logger = log_mgr.get_logger().getChild("services.metadata.chain")
    logger.info("Tier hit", extra={"event": "cache.tier.hit", "tier": "redis"})

Records are rendered as one JSON object per line. Fields pushed with
:func:`log_context` (a correlation id, the cache key being resolved) are
copied onto every record emitted inside the block, including records from
tasks spawned there.
"""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterator, Mapping, Optional

LOGGER_NAME = "bookhub"
LOG_DIR_ENV = "BOOKHUB_LOG_DIR"
LOG_FILE_NAME = "bookhub.log"
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 5
DEFAULT_LOG_LEVEL = logging.INFO

_EMPTY_CONTEXT: Mapping[str, object] = MappingProxyType({})
_context: contextvars.ContextVar[Mapping[str, object]] = contextvars.ContextVar(
    "bookhub_log_context", default=_EMPTY_CONTEXT
)
_logger: Optional[logging.Logger] = None

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RECORD_ATTRIBUTES = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}


class JSONLogFormatter(logging.Formatter):
    """Render log records as single-line JSON documents."""

    DEFAULT_FIELDS: tuple[str, ...] = (
        "correlation_id",
        "event",
        "tier",
        "source",
        "cache_key",
        "duration_ms",
        "status",
    )

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        document: Dict[str, object] = {
            "timestamp": created.isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "pid": record.process,
            "thread": record.threadName,
        }
        extra: Dict[str, object] = {}
        for key, value in record.__dict__.items():
            if key in self.DEFAULT_FIELDS:
                if value is not None:
                    document[key] = value
            elif key not in _RECORD_ATTRIBUTES:
                extra[key] = value
        if extra:
            document["extra"] = extra
        if record.exc_info:
            document["exception"] = self.formatException(record.exc_info)
        return json.dumps(document, ensure_ascii=False, default=str)


class LogContextFilter(logging.Filter):
    """Copy the active :func:`log_context` fields onto records that lack them."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        for key, value in _context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


def _build_handlers(log_dir: Optional[str]) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    directory = log_dir or os.environ.get(LOG_DIR_ENV)
    if directory:
        path = Path(directory).expanduser()
        path.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                path / LOG_FILE_NAME, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS
            )
        )
    formatter = JSONLogFormatter()
    context_filter = LogContextFilter()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(context_filter)
    return handlers


def setup_logging(
    log_level: int = DEFAULT_LOG_LEVEL, *, log_dir: Optional[str] = None
) -> logging.Logger:
    """Configure the ``bookhub`` logger once and return it.

    A rotating file handler is attached when ``log_dir`` (or the
    ``BOOKHUB_LOG_DIR`` environment variable) names a directory. Later
    calls only adjust the level.
    """
    global _logger

    if _logger is None:
        logger = logging.getLogger(LOGGER_NAME)
        logger.propagate = False
        for handler in _build_handlers(log_dir):
            logger.addHandler(handler)
        _logger = logger
    configure_logging_level(log_level=log_level)
    return _logger


def get_logger() -> logging.Logger:
    """Return the ``bookhub`` logger, configuring it on first use."""
    return _logger if _logger is not None else setup_logging()


def configure_logging_level(debug_enabled: bool = False, log_level: Optional[int] = None) -> int:
    """Set the level of the logger and its handlers and return it."""
    level = log_level if log_level is not None else (
        logging.DEBUG if debug_enabled else DEFAULT_LOG_LEVEL
    )
    logger = get_logger()
    logger.setLevel(level)
    for handler in logger.handlers:
        handler.setLevel(level)
    return level


def get_log_context() -> Dict[str, object]:
    return dict(_context.get())


@contextlib.contextmanager
def log_context(**values: object) -> Iterator[None]:
    """Add ``values`` (``None`` entries skipped) to the context for the block."""

    merged = dict(_context.get())
    merged.update((key, value) for key, value in values.items() if value is not None)
    token = _context.set(MappingProxyType(merged))
    try:
        yield
    finally:
        _context.reset(token)


def clear_log_context() -> None:
    _context.set(_EMPTY_CONTEXT)


__all__ = [
    "JSONLogFormatter",
    "LogContextFilter",
    "clear_log_context",
    "configure_logging_level",
    "get_log_context",
    "get_logger",
    "log_context",
    "setup_logging",
]
