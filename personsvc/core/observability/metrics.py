"""
OpenTelemetry Metrics

Meter providers and the standard instruments of the person service.
"""

import logging
from typing import Dict, Optional, Tuple

from opentelemetry import metrics
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    ConsoleMetricExporter,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.resources import SERVICE_NAME, Resource

logger = logging.getLogger(__name__)

# name -> (description, unit)
COUNTERS: Dict[str, Tuple[str, str]] = {
    "person_mutations_total": ("Person mutations by operation and outcome", "1"),
    "outbox_events_enqueued_total": ("Outbox events committed", "1"),
    "outbox_events_published_total": ("Outbox events acknowledged as published", "1"),
    "outbox_events_errored_total": ("Failed outbox publish attempts", "1"),
    "outbox_events_abandoned_total": ("Outbox events that reached the retry ceiling", "1"),
}

HISTOGRAMS: Dict[str, Tuple[str, str]] = {
    "person_mutation_duration_seconds": ("Person mutation duration", "s"),
    "outbox_relay_batch_size": ("Events claimed per relay batch", "1"),
}


def init_metrics(
    service_name: str = "personsvc",
    otlp_endpoint: Optional[str] = None,
    console_export: bool = False,
    export_interval_ms: int = 60000,
    set_global: bool = False
) -> MeterProvider:
    """
    Initialize an OpenTelemetry meter provider.

    Args:
        service_name: Name of the service
        otlp_endpoint: OTLP exporter endpoint
        console_export: Enable console export for debugging
        export_interval_ms: Export interval in milliseconds
        set_global: Also install the provider process-wide

    Returns:
        Configured meter provider
    """
    readers = []

    if otlp_endpoint:
        otlp_exporter = OTLPMetricExporter(endpoint=otlp_endpoint, insecure=True)
        readers.append(PeriodicExportingMetricReader(
            otlp_exporter,
            export_interval_millis=export_interval_ms
        ))
        logger.info(f"OTel metrics: OTLP exporter configured -> {otlp_endpoint}")

    if console_export:
        readers.append(PeriodicExportingMetricReader(
            ConsoleMetricExporter(),
            export_interval_millis=export_interval_ms
        ))
        logger.info("OTel metrics: Console exporter enabled")

    resource = Resource.create({SERVICE_NAME: service_name})
    provider = MeterProvider(resource=resource, metric_readers=readers)

    if set_global:
        metrics.set_meter_provider(provider)

    logger.info(f"OTel metrics initialized: {service_name}")

    return provider


def create_instruments(
    meter: metrics.Meter
) -> Tuple[Dict[str, metrics.Counter], Dict[str, metrics.Histogram]]:
    """Create the standard counters and histograms on a meter."""
    counters = {
        name: meter.create_counter(name, description=description, unit=unit)
        for name, (description, unit) in COUNTERS.items()
    }
    histograms = {
        name: meter.create_histogram(name, description=description, unit=unit)
        for name, (description, unit) in HISTOGRAMS.items()
    }
    return counters, histograms
