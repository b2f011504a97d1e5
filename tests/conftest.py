"""
Shared Test Fixtures

Integration fixtures run the real adapter against a temporary SQLite file.
"""

from typing import Any, List

import pytest
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from personsvc.core.config import Settings
from personsvc.core.database import DatabaseAdapter, DatabaseConfig, create_schema
from personsvc.core.observability import Telemetry
from personsvc.core.outbox import OutboxStore
from personsvc.core.persons import PersonService


class TelemetryCapture:
    """Telemetry backed by in-memory span and metric exporters."""

    def __init__(self):
        self.span_exporter = InMemorySpanExporter()
        tracer_provider = TracerProvider()
        tracer_provider.add_span_processor(SimpleSpanProcessor(self.span_exporter))

        self.metric_reader = InMemoryMetricReader()
        meter_provider = MeterProvider(metric_readers=[self.metric_reader])

        self.telemetry = Telemetry(
            tracer_provider.get_tracer("personsvc-tests"),
            meter_provider.get_meter("personsvc-tests")
        )

    def spans(self, name: str = None) -> List[Any]:
        finished = self.span_exporter.get_finished_spans()
        return [s for s in finished if name is None or s.name == name]

    def data_points(self, name: str) -> List[Any]:
        data = self.metric_reader.get_metrics_data()
        points = []
        if data is None:
            return points
        for resource_metrics in data.resource_metrics:
            for scope_metrics in resource_metrics.scope_metrics:
                for metric in scope_metrics.metrics:
                    if metric.name == name:
                        points.extend(metric.data.data_points)
        return points

    def counter_value(self, name: str, **attributes) -> int:
        return sum(
            point.value
            for point in self.data_points(name)
            if all(point.attributes.get(key) == value for key, value in attributes.items())
        )


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a throwaway SQLite database."""
    return Settings(
        database_backend="sqlite",
        sqlite_path=str(tmp_path / "personsvc-test.db"),
        person_events_topic="person_events",
        outbox_max_error_count=10,
        outbox_max_batch_size=50,
        outbox_claim_ttl_seconds=60,
        persons_max_page_size=100
    )


@pytest.fixture
async def db(settings):
    """Connected adapter with the schema created."""
    adapter = DatabaseAdapter(DatabaseConfig(settings))
    await adapter.connect()
    async with adapter.acquire() as conn:
        await create_schema(conn)
    yield adapter
    await adapter.disconnect()


@pytest.fixture
def capture():
    return TelemetryCapture()


@pytest.fixture
def outbox(db, settings, capture):
    return OutboxStore(db, settings, capture.telemetry)


@pytest.fixture
async def service(db, settings, capture):
    """Started PersonService sharing the captured telemetry."""
    svc = PersonService(db, settings, capture.telemetry)
    await svc.start()
    return svc


@pytest.fixture
def count_rows(db):
    """Async helper: number of rows in a table."""
    async def _count(table: str) -> int:
        return await db.fetchval(f"SELECT COUNT(*) FROM {table}")
    return _count
