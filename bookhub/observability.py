"""Observability utilities: OpenTelemetry counters, histograms and spans.

Instruments are created through the global OpenTelemetry API, so they stay
no-ops until the host process installs a meter or tracer provider. Counter
totals are also tallied per process for status snapshots.
"""

from __future__ import annotations

import contextlib
import threading
import time
from collections import defaultdict
from typing import Dict, Iterator, Mapping, Optional, Tuple

from opentelemetry import metrics, trace

from . import logging_manager as log_mgr

logger = log_mgr.get_logger().getChild("observability")

INSTRUMENTATION_NAME = "bookhub.lookup"

_tracer = trace.get_tracer(INSTRUMENTATION_NAME)
_meter = metrics.get_meter(INSTRUMENTATION_NAME)
_instrument_lock = threading.Lock()
_counter_instruments: Dict[str, metrics.Counter] = {}
_histograms: Dict[str, metrics.Histogram] = {}

_CounterKey = Tuple[str, Tuple[Tuple[str, str], ...]]

_tally_lock = threading.Lock()
_tallies: Dict[_CounterKey, int] = defaultdict(int)


def _otel_attributes(attributes: Mapping[str, object]) -> Dict[str, object]:
    converted: Dict[str, object] = {}
    for key, value in attributes.items():
        if value is None:
            continue
        converted[str(key)] = value if isinstance(value, (str, bool, int, float)) else str(value)
    return converted


def _get_counter_instrument(name: str) -> metrics.Counter:
    with _instrument_lock:
        counter = _counter_instruments.get(name)
        if counter is None:
            counter = _meter.create_counter(name)
            _counter_instruments[name] = counter
        return counter


def _get_histogram(name: str) -> metrics.Histogram:
    with _instrument_lock:
        histogram = _histograms.get(name)
        if histogram is None:
            histogram = _meter.create_histogram(name)
            _histograms[name] = histogram
        return histogram


def _tally_key(name: str, attributes: Mapping[str, object]) -> _CounterKey:
    return name, tuple(sorted((str(key), str(value)) for key, value in attributes.items()))


def increment_counter(name: str, amount: int = 1, **attributes: object) -> int:
    """Add ``amount`` to the counter ``name`` and return the process-local total."""

    _get_counter_instrument(name).add(amount, attributes=_otel_attributes(attributes))
    key = _tally_key(name, attributes)
    with _tally_lock:
        _tallies[key] += amount
        value = _tallies[key]
    logger.debug(
        "Counter incremented",
        extra={
            "event": "observability.counter",
            "metric": name,
            "value": value,
            "attributes": dict(attributes),
        },
    )
    return value


def get_counter(name: str, **attributes: object) -> int:
    """Return the process-local total of a counter (``0`` when never incremented)."""

    with _tally_lock:
        return _tallies.get(_tally_key(name, attributes), 0)


def reset_counters() -> None:
    """Forget the process-local totals; exported OpenTelemetry data is untouched."""

    with _tally_lock:
        _tallies.clear()


def record_metric(
    name: str,
    value: float,
    attributes: Optional[Mapping[str, object]] = None,
) -> None:
    """Record a numeric observation on the histogram ``name``."""

    attributes = dict(attributes or {})
    _get_histogram(name).record(value, attributes=_otel_attributes(attributes))
    logger.debug(
        "Metric recorded",
        extra={
            "event": "observability.metric_recorded",
            "metric": name,
            "value": value,
            "attributes": attributes,
        },
    )


@contextlib.contextmanager
def lookup_operation(
    name: str,
    *,
    attributes: Optional[Mapping[str, object]] = None,
) -> Iterator[None]:
    """Instrument one orchestrator operation with a span, a duration and logs."""

    attrs = dict(attributes or {})
    correlation_id = attrs.pop("correlation_id", None)
    if "correlation_id" in log_mgr.get_log_context():
        correlation_id = None

    start = time.perf_counter()
    status = "error"
    with log_mgr.log_context(correlation_id=correlation_id):
        span_attributes = _otel_attributes(
            {**attrs, "operation": name, **log_mgr.get_log_context()}
        )
        logger.debug(
            "Operation started",
            extra={"event": "lookup.operation.start", "operation": name, "attributes": attrs},
        )
        with _tracer.start_as_current_span(
            f"lookup.operation.{name}", attributes=span_attributes
        ) as span:
            try:
                yield
                status = "ok"
            finally:
                span.set_attribute("status", status)
                duration_ms = (time.perf_counter() - start) * 1000.0
                record_metric(
                    "lookup.operation.duration",
                    duration_ms,
                    {**attrs, "operation": name, "status": status},
                )
                logger.debug(
                    "Operation completed",
                    extra={
                        "event": "lookup.operation.complete",
                        "operation": name,
                        "duration_ms": round(duration_ms, 2),
                        "status": status,
                        "attributes": attrs,
                    },
                )


__all__ = [
    "get_counter",
    "increment_counter",
    "lookup_operation",
    "record_metric",
    "reset_counters",
]
