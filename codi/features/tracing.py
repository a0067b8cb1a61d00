"""OpenTelemetry tracing support for agent turns, provider calls and tool calls."""

import logging
import os
from collections.abc import Mapping
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Span, Status, StatusCode

logger = logging.getLogger(__name__)

TRACER_NAME = "codi"

# Global state
_tracer_provider: TracerProvider | None = None
_tracer: trace.Tracer | None = None


def get_tracer(enabled: bool = False) -> trace.Tracer:
    """Get or create the OpenTelemetry tracer instance.

    Passing ``enabled=True`` installs the SDK provider if none is installed yet.
    """
    if _tracer is None or (enabled and _tracer_provider is None):
        initialize_otel(enabled)
    return _tracer


def initialize_otel(enabled: bool = False) -> None:
    """Initialize OpenTelemetry.

    An SDK ``TracerProvider`` exporting to the console is installed only when
    ``enabled`` is True (``AgentSettings.otel_enabled``).
    Otherwise spans go to whatever global provider the host installed, which
    is a no-op provider by default.
    """
    global _tracer_provider, _tracer

    service_name = os.getenv("CODI_OTEL_SERVICE_NAME", TRACER_NAME)

    if not enabled:
        _tracer = trace.get_tracer(service_name)
        return

    try:
        _tracer_provider = TracerProvider()
        _tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        trace.set_tracer_provider(_tracer_provider)
        _tracer = trace.get_tracer(service_name)
        logger.info("OpenTelemetry initialized with console exporter")
    except Exception as e:
        # Log error but continue with no-op tracer
        logger.warning("Failed to initialize OpenTelemetry: %s. Tracing disabled.", e)
        _tracer = trace.NoOpTracer()


def shutdown_otel() -> None:
    """Flush and shut down the SDK provider, if one was installed."""
    global _tracer_provider, _tracer
    if _tracer_provider is not None:
        _tracer_provider.shutdown()
    _tracer_provider = None
    _tracer = None


def get_current_span() -> Span:
    """Get the current active span."""
    return trace.get_current_span()


def set_span_attributes(span: Span, attributes: Mapping[str, Any]) -> None:
    """Set attributes on ``span``, dropping None values OpenTelemetry rejects."""
    for key, value in attributes.items():
        if value is not None:
            span.set_attribute(key, value)


def mark_span_error(span: Span, error: BaseException | str) -> None:
    """Record ``error`` on ``span`` and set its status to ERROR."""
    if isinstance(error, BaseException):
        span.record_exception(error)
    span.set_status(Status(StatusCode.ERROR, str(error)))
