"""
Telemetry Context

A Telemetry bundles one tracer with the standard metric instruments. It is
created once at startup and handed to every store, service and relay that
should report, so spans and metrics never depend on hidden module state.
"""

from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from opentelemetry import metrics, trace
from opentelemetry.trace import Span

from ..config import Settings
from .metrics import create_instruments, init_metrics
from .tracing import create_span, init_tracing

INSTRUMENTATION_NAME = "personsvc"


class Telemetry:
    """
    Tracer and metric instruments passed by reference.

    Usage:
        telemetry = Telemetry(tracer_provider.get_tracer("personsvc"),
                              meter_provider.get_meter("personsvc"))

        with telemetry.span("person_store.create", {"person.id": str(pid)}):
            ...
        telemetry.count("person_mutations_total", attributes={"operation": "create"})
    """

    def __init__(self, tracer: trace.Tracer, meter: Optional[metrics.Meter] = None):
        self.tracer = tracer
        self.meter = meter or metrics.NoOpMeter(INSTRUMENTATION_NAME)
        self._counters, self._histograms = create_instruments(self.meter)

    @classmethod
    def noop(cls) -> "Telemetry":
        """Telemetry that records nothing."""
        return cls(trace.NoOpTracer(), metrics.NoOpMeter(INSTRUMENTATION_NAME))

    @contextmanager
    def span(self, name: str, attributes: Optional[Dict[str, Any]] = None) -> Iterator[Span]:
        """Open a span that ends when the block exits."""
        with create_span(self.tracer, name, attributes) as span:
            yield span

    def count(self, name: str, value: int = 1, attributes: Optional[Dict[str, Any]] = None):
        """Record a counter metric."""
        if name in self._counters:
            self._counters[name].add(value, attributes or {})

    def observe(self, name: str, value: float, attributes: Optional[Dict[str, Any]] = None):
        """Record a histogram metric."""
        if name in self._histograms:
            self._histograms[name].record(value, attributes or {})


def init_telemetry(settings: Settings, service_version: str = "0.1.0") -> Telemetry:
    """Build tracer and meter providers from settings and wrap them."""
    tracer_provider = init_tracing(
        service_name=settings.service_name,
        service_version=service_version,
        otlp_endpoint=settings.otlp_endpoint
    )
    meter_provider = init_metrics(
        service_name=settings.service_name,
        otlp_endpoint=settings.otlp_endpoint
    )
    return Telemetry(
        tracer_provider.get_tracer(INSTRUMENTATION_NAME, service_version),
        meter_provider.get_meter(INSTRUMENTATION_NAME, service_version)
    )
