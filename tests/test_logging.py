import json
import logging
import sys

import pytest

from bookhub import logging_manager as log_mgr

pytestmark = pytest.mark.metadata


def _record(message: str = "tier hit", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="bookhub.services.metadata.chain",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONLogFormatter:
    def test_known_fields_are_promoted(self) -> None:
        record = _record(event="cache.tier.hit", tier="redis", cache_key="book:abc", attempt=2)

        payload = json.loads(log_mgr.JSONLogFormatter().format(record))

        assert payload["message"] == "tier hit"
        assert payload["level"] == "INFO"
        assert payload["logger"] == "bookhub.services.metadata.chain"
        assert payload["event"] == "cache.tier.hit"
        assert payload["tier"] == "redis"
        assert payload["cache_key"] == "book:abc"
        assert payload["extra"] == {"attempt": 2}

    def test_exceptions_are_rendered(self) -> None:
        try:
            raise ValueError("bad payload")
        except ValueError:
            record = _record("failed")
            record.exc_info = sys.exc_info()

        payload = json.loads(log_mgr.JSONLogFormatter().format(record))

        assert "ValueError: bad payload" in payload["exception"]


class TestLogContext:
    def test_context_is_scoped(self) -> None:
        with log_mgr.log_context(correlation_id="req-1", source=None):
            assert log_mgr.get_log_context() == {"correlation_id": "req-1"}
            with log_mgr.log_context(cache_key="book:abc"):
                assert log_mgr.get_log_context() == {
                    "correlation_id": "req-1",
                    "cache_key": "book:abc",
                }
            assert log_mgr.get_log_context() == {"correlation_id": "req-1"}

        assert log_mgr.get_log_context() == {}

    def test_filter_injects_context_without_overriding_record_values(self) -> None:
        record = _record(event="explicit")

        with log_mgr.log_context(correlation_id="req-2", event="from-context"):
            assert log_mgr.LogContextFilter().filter(record)

        assert record.correlation_id == "req-2"
        assert record.event == "explicit"


def test_configure_logging_level_toggles_debug() -> None:
    logger = log_mgr.get_logger()
    original = logger.level
    try:
        assert log_mgr.configure_logging_level(debug_enabled=True) == logging.DEBUG
        assert logger.level == logging.DEBUG
        assert log_mgr.configure_logging_level() == logging.INFO
    finally:
        log_mgr.configure_logging_level(log_level=original)


def test_bookhub_logger_does_not_propagate() -> None:
    logger = log_mgr.get_logger()

    assert logger.name == "bookhub"
    assert logger.propagate is False
    assert any(isinstance(handler.formatter, log_mgr.JSONLogFormatter) for handler in logger.handlers)
