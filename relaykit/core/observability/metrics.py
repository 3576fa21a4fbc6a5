"""
OpenTelemetry Metrics

Counters and histograms for outbox delivery, the DLQ and idempotency
checks. Instruments are created lazily against the current meter, so
recording works (as a no-op) before `init_metrics` is called.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from opentelemetry import metrics
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    ConsoleMetricExporter,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.resources import SERVICE_NAME, Resource

logger = logging.getLogger(__name__)

SERVICE = "relaykit"

COUNTERS: Dict[str, Tuple[str, str]] = {
    "outbox_enqueued_total": ("Outbox items enqueued", "1"),
    "outbox_claimed_total": ("Outbox items claimed by workers", "1"),
    "outbox_delivered_total": ("Outbox items delivered", "1"),
    "outbox_failed_total": ("Outbox delivery failures reported", "1"),
    "dlq_entries_total": ("Outbox items moved to the dead letter queue", "1"),
    "idempotency_checks_total": ("Idempotency checks by outcome", "1"),
}

HISTOGRAMS: Dict[str, Tuple[str, str]] = {
    "outbox_dispatch_duration_seconds": ("Outbox dispatch duration", "s"),
}

_meter: Optional[metrics.Meter] = None
_counters: Dict[str, metrics.Counter] = {}
_histograms: Dict[str, metrics.Histogram] = {}


def init_metrics(
    service_name: str = SERVICE,
    otlp_endpoint: Optional[str] = None,
    console_export: bool = False,
    export_interval_ms: int = 60000
) -> metrics.Meter:
    """
    Initialize OpenTelemetry metrics.

    Args:
        service_name: Name of the service
        otlp_endpoint: OTLP exporter endpoint
        console_export: Enable console export for debugging
        export_interval_ms: Export interval in milliseconds

    Returns:
        Configured meter
    """
    global _meter

    readers = []

    if otlp_endpoint:
        readers.append(PeriodicExportingMetricReader(
            OTLPMetricExporter(endpoint=otlp_endpoint, insecure=True),
            export_interval_millis=export_interval_ms
        ))
        logger.info(f"OTel metrics: OTLP exporter configured -> {otlp_endpoint}")

    if console_export:
        readers.append(PeriodicExportingMetricReader(
            ConsoleMetricExporter(),
            export_interval_millis=export_interval_ms
        ))
        logger.info("OTel metrics: Console exporter enabled")

    provider = MeterProvider(
        resource=Resource.create({SERVICE_NAME: service_name}),
        metric_readers=readers
    )
    metrics.set_meter_provider(provider)

    _meter = metrics.get_meter(service_name)
    # Instruments bound to the old meter would keep reporting nowhere
    _counters.clear()
    _histograms.clear()

    logger.info(f"OTel metrics initialized: {service_name}")
    return _meter


def get_meter() -> metrics.Meter:
    """Get the global meter."""
    global _meter
    if _meter is None:
        _meter = metrics.get_meter(SERVICE)
    return _meter


def _counter(name: str) -> Optional[metrics.Counter]:
    if name not in _counters and name in COUNTERS:
        description, unit = COUNTERS[name]
        _counters[name] = get_meter().create_counter(name, description=description, unit=unit)
    return _counters.get(name)


def _histogram(name: str) -> Optional[metrics.Histogram]:
    if name not in _histograms and name in HISTOGRAMS:
        description, unit = HISTOGRAMS[name]
        _histograms[name] = get_meter().create_histogram(name, description=description, unit=unit)
    return _histograms.get(name)


def record_counter(
    name: str,
    value: int = 1,
    attributes: Optional[Dict[str, Any]] = None
):
    """Record a counter metric. Unknown names are ignored."""
    counter = _counter(name)
    if counter is not None:
        counter.add(value, attributes or {})


def record_histogram(
    name: str,
    value: float,
    attributes: Optional[Dict[str, Any]] = None
):
    """Record a histogram metric. Unknown names are ignored."""
    histogram = _histogram(name)
    if histogram is not None:
        histogram.record(value, attributes or {})
