"""
Tests for person and outbox models.
"""

from datetime import datetime, timezone
from uuid import UUID, uuid4

import pytest
from pydantic import ValidationError

from personsvc.core.outbox import OutboxEvent, OutboxStatus, serialize_payload
from personsvc.core.persons import NewPerson, Person, PersonEventName, PersonUpdate
from personsvc.core.errors import StorageError
from personsvc.core.outbox.store import _to_event
from personsvc.core.persons.store import _to_person


class TestPersonModels:
    """Field limits follow the persons table."""

    def test_new_person_mints_id(self):
        """Each NewPerson gets its own id."""
        a = NewPerson(first_name="Ada", last_name="Lovelace")
        b = NewPerson(first_name="Ada", last_name="Lovelace")

        assert isinstance(a.id, UUID)
        assert a.id != b.id
        assert a.middle_name is None
        assert a.suffix is None

    @pytest.mark.parametrize("field,value", [
        ("first_name", ""),
        ("first_name", "x" * 51),
        ("last_name", ""),
        ("last_name", "x" * 101),
        ("middle_name", "x" * 51),
        ("suffix", "x" * 21),
    ])
    def test_field_limits(self, field, value):
        data = {"first_name": "Ada", "last_name": "Lovelace", field: value}
        with pytest.raises(ValidationError):
            NewPerson(**data)

    def test_longest_allowed_values(self):
        person = NewPerson(first_name="x" * 50, last_name="y" * 100, middle_name="z" * 50, suffix="s" * 20)
        assert len(person.last_name) == 100

    def test_update_requires_id(self):
        with pytest.raises(ValidationError):
            PersonUpdate(first_name="Ada", last_name="King")

    def test_person_from_row(self):
        """Rows with ISO text timestamps and ids validate."""
        person_id = uuid4()
        person = Person.model_validate({
            "id": str(person_id),
            "first_name": "Ada",
            "middle_name": None,
            "last_name": "Lovelace",
            "suffix": None,
            "created_at": "2026-01-01T10:00:00.000000+00:00",
            "updated_at": None,
        })

        assert person.id == person_id
        assert person.created_at == datetime(2026, 1, 1, 10, tzinfo=timezone.utc)

    def test_event_names(self):
        assert {e.value for e in PersonEventName} == {"created", "updated", "deleted"}


class TestOutboxEvent:
    """OutboxEvent defaults and helpers."""

    def test_defaults(self):
        event = OutboxEvent(topic="person_events", event_name="created", payload="{}")

        assert event.status == OutboxStatus.UNPUBLISHED
        assert event.error_count == 0
        assert event.created_at.tzinfo is not None
        assert event.is_pending

    def test_not_pending_when_published_or_abandoned(self):
        published = OutboxEvent(
            topic="t", event_name="created", payload="{}",
            status=OutboxStatus.PUBLISHED, published_at=datetime.now(timezone.utc)
        )
        abandoned = OutboxEvent(topic="t", event_name="created", payload="{}", status=OutboxStatus.ABANDONED)

        assert not published.is_pending
        assert not abandoned.is_pending

    def test_negative_error_count_rejected(self):
        with pytest.raises(ValidationError):
            OutboxEvent(topic="t", event_name="created", payload="{}", error_count=-1)

    def test_payload_data(self):
        event = OutboxEvent(topic="t", event_name="deleted", payload='{"id":"abc"}')
        assert event.payload_data() == {"id": "abc"}


class TestSerializePayload:
    """Payload JSON encoding."""

    def test_model_payload(self):
        """Models serialize with ISO timestamps and string ids."""
        person = Person(
            id=UUID("00000000-0000-0000-0000-000000000001"),
            first_name="Ada",
            last_name="Lovelace",
            created_at=datetime(2026, 1, 1, tzinfo=timezone.utc)
        )

        assert serialize_payload(person) == (
            '{"created_at":"2026-01-01T00:00:00Z","first_name":"Ada",'
            '"id":"00000000-0000-0000-0000-000000000001","last_name":"Lovelace",'
            '"middle_name":null,"suffix":null,"updated_at":null}'
        )

    def test_dict_with_uuid(self):
        person_id = uuid4()
        assert serialize_payload({"id": person_id}) == f'{{"id":"{person_id}"}}'

    def test_unserializable(self):
        with pytest.raises(StorageError):
            serialize_payload({"value": object()})


class TestRowMapping:
    """Rows that do not validate surface as StorageError."""

    def test_person_row_with_empty_last_name(self):
        row = {
            "id": uuid4(),
            "first_name": "Ada",
            "middle_name": None,
            "last_name": "",
            "suffix": None,
            "created_at": datetime.now(timezone.utc),
            "updated_at": None,
        }

        with pytest.raises(StorageError) as exc_info:
            _to_person(row)

        assert isinstance(exc_info.value.__cause__, ValidationError)

    def test_event_row_with_empty_topic(self):
        row = {
            "id": uuid4(),
            "topic": "",
            "event_name": "created",
            "payload": "{}",
            "status": "unpublished",
            "created_at": datetime.now(timezone.utc),
            "error_count": 0,
        }

        with pytest.raises(StorageError, match="does not map"):
            _to_event(row)
