"""
Tests for structured logging and the Telemetry context.
"""

import json
import logging
import sys
from uuid import uuid4

import pytest
from opentelemetry.trace import StatusCode

from personsvc.core.errors import PersonNotFoundError
from personsvc.core.observability import StructuredFormatter, Telemetry, TraceContextFilter


def make_record(message="hello", **extra):
    record = logging.LogRecord(
        name="personsvc.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:
    """JSON log lines."""

    def test_basic_fields(self):
        entry = json.loads(StructuredFormatter().format(make_record()))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "personsvc.test"
        assert entry["message"] == "hello"
        assert entry["timestamp"].endswith("Z")
        assert entry["trace_id"] is None

    def test_extra_fields(self):
        """Extras are included; unserializable ones as strings."""
        entry = json.loads(StructuredFormatter().format(
            make_record(operation="create_person", handle=object())
        ))

        assert entry["operation"] == "create_person"
        assert entry["handle"].startswith("<object object")

    def test_trace_ids_inside_span(self, capture):
        """Lines logged inside a span carry its trace and span ids."""
        with capture.telemetry.span("person_service.create_person") as span:
            entry = json.loads(StructuredFormatter().format(make_record()))
            context = span.get_span_context()

        assert entry["trace_id"] == format(context.trace_id, "032x")
        assert entry["span_id"] == format(context.span_id, "016x")

    def test_exception(self):
        try:
            raise ValueError("broken")
        except ValueError:
            record = make_record()
            record.exc_info = sys.exc_info()

        entry = json.loads(StructuredFormatter().format(record))
        assert "ValueError: broken" in entry["exception"]

    def test_service_name(self):
        """Every entry names the emitting service."""
        assert json.loads(StructuredFormatter().format(make_record()))["service"] == "personsvc"

        entry = json.loads(StructuredFormatter("personsvc-relay").format(make_record()))
        assert entry["service"] == "personsvc-relay"

    def test_person_service_error_context(self):
        """A logged PersonServiceError contributes its code and operation."""
        try:
            raise PersonNotFoundError(uuid4(), operation="update_person")
        except PersonNotFoundError:
            record = make_record()
            record.exc_info = sys.exc_info()

        entry = json.loads(StructuredFormatter().format(record))
        assert entry["error_code"] == "PERSON_NOT_FOUND"
        assert entry["operation"] == "update_person"


class TestTraceContextFilter:
    def test_no_trace(self):
        record = make_record()
        assert TraceContextFilter().filter(record) is True
        assert record.trace_id == "no-trace"


class TestTelemetry:
    """Spans and instruments carried by reference."""

    def test_noop(self):
        """The no-op context accepts every call."""
        telemetry = Telemetry.noop()

        with telemetry.span("anything", {"k": "v"}) as span:
            span.set_attribute("x", 1)
        telemetry.count("person_mutations_total", attributes={"operation": "create_person"})
        telemetry.observe("person_mutation_duration_seconds", 0.1)

    def test_span_attributes(self, capture):
        with capture.telemetry.span("outbox_store.insert", {"outbox.topic": "person_events"}):
            pass

        (span,) = capture.spans("outbox_store.insert")
        assert span.attributes["outbox.topic"] == "person_events"

    def test_span_records_exception(self, capture):
        with pytest.raises(RuntimeError):
            with capture.telemetry.span("person_store.update"):
                raise RuntimeError("write failed")

        (span,) = capture.spans("person_store.update")
        assert span.status.status_code == StatusCode.ERROR
        assert span.events[0].name == "exception"

    def test_counters_and_histograms(self, capture):
        capture.telemetry.count("outbox_events_published_total")
        capture.telemetry.count("outbox_events_published_total", 2)
        capture.telemetry.observe("outbox_relay_batch_size", 7)

        assert capture.counter_value("outbox_events_published_total") == 3
        (point,) = capture.data_points("outbox_relay_batch_size")
        assert point.sum == 7

    def test_unknown_metric_ignored(self, capture):
        capture.telemetry.count("not_a_metric")
        assert capture.data_points("not_a_metric") == []
