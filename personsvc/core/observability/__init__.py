"""
Observability Module

Structured logging, OpenTelemetry tracing and metrics, and the Telemetry
context that carries a tracer and instruments into each component.
"""

from .tracing import (
    init_tracing,
    get_current_span,
    get_trace_id,
    get_span_id,
    create_span,
    add_event_to_span,
)
from .metrics import (
    init_metrics,
    create_instruments,
)
from .telemetry import Telemetry, init_telemetry
from .logging import configure_logging, StructuredFormatter, TraceContextFilter

__all__ = [
    # Tracing
    "init_tracing",
    "get_current_span",
    "get_trace_id",
    "get_span_id",
    "create_span",
    "add_event_to_span",
    # Metrics
    "init_metrics",
    "create_instruments",
    # Context
    "Telemetry",
    "init_telemetry",
    # Logging
    "configure_logging",
    "StructuredFormatter",
    "TraceContextFilter",
]
