"""
Observability Module

OpenTelemetry tracing and metrics, and structured logging.
"""

from .tracing import (
    init_tracing,
    get_tracer,
    get_current_span,
    get_trace_id,
    get_span_id,
    create_span,
    traced,
    add_event_to_span,
)
from .metrics import (
    init_metrics,
    get_meter,
    record_counter,
    record_histogram,
)
from .logging import StructuredFormatter, configure_logging
from .setup import init_observability

__all__ = [
    # Tracing
    "init_tracing",
    "get_tracer",
    "get_current_span",
    "get_trace_id",
    "get_span_id",
    "create_span",
    "traced",
    "add_event_to_span",
    # Metrics
    "init_metrics",
    "get_meter",
    "record_counter",
    "record_histogram",
    # Logging
    "StructuredFormatter",
    "configure_logging",
    "init_observability",
]
