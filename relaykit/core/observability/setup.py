"""
Process-level observability setup from environment variables.

    LOG_LEVEL               DEBUG, INFO (default), WARNING, ERROR
    LOG_FORMAT              "json" (default) or "text"
    OTEL_ENABLED            "true" to initialize tracing and metrics
    OTEL_EXPORTER_OTLP_ENDPOINT
                            OTLP collector; setting it also enables OTel
    OTEL_CONSOLE_EXPORT     "true" to print spans and metrics to stdout
"""

import logging
import os

from ... import __version__
from ..config import load_environment
from .logging import configure_logging
from .metrics import init_metrics
from .tracing import init_tracing

logger = logging.getLogger(__name__)


def init_observability(service_name: str = "relaykit") -> bool:
    """
    Configure logging, then tracing and metrics when enabled.

    Returns:
        True if OpenTelemetry was initialized
    """
    load_environment()

    configure_logging(
        level=os.getenv("LOG_LEVEL", "INFO"),
        structured=os.getenv("LOG_FORMAT", "json").lower() == "json",
        service_name=service_name,
    )

    otlp_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    otel_enabled = os.getenv("OTEL_ENABLED", "false").lower() == "true"
    console_export = os.getenv("OTEL_CONSOLE_EXPORT", "false").lower() == "true"

    if not (otel_enabled or otlp_endpoint):
        return False

    init_tracing(
        service_name=service_name,
        service_version=__version__,
        otlp_endpoint=otlp_endpoint,
        console_export=console_export,
    )
    init_metrics(
        service_name=service_name,
        otlp_endpoint=otlp_endpoint,
        console_export=console_export,
    )
    logger.info("OpenTelemetry observability initialized")
    return True
