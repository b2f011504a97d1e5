"""
Person Service

Combines each person mutation with its outbox event in a single
transaction: either both are committed or neither is.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional
from uuid import UUID

from ..config import Settings, get_settings
from ..database.adapter import Connection, DatabaseAdapter, get_database
from ..database.schema import verify_schema
from ..errors import InvalidRequestError, PersonServiceError
from ..observability.telemetry import Telemetry
from ..outbox.store import OUTBOX_COLUMNS, OutboxStore
from .models import NewPerson, Person, PersonEventName, PersonUpdate
from .store import PERSON_COLUMNS, PersonStore

logger = logging.getLogger(__name__)


class PersonService:
    """
    Create, update, delete and read persons.

    Every mutation runs one attempt of:
        acquire -> begin -> entity write -> outbox insert -> commit
    and returns only after the commit succeeded. Any failure before the
    commit rolls back both writes.

    Usage:
        service = PersonService(db, settings, telemetry)
        await service.start()

        person = await service.create_person(NewPerson(first_name="Ada", last_name="Lovelace"))
    """

    def __init__(
        self,
        db: DatabaseAdapter,
        settings: Optional[Settings] = None,
        telemetry: Optional[Telemetry] = None,
        person_store: Optional[PersonStore] = None,
        outbox_store: Optional[OutboxStore] = None
    ):
        self._db = db
        self._settings = settings or get_settings()
        self._telemetry = telemetry or Telemetry.noop()
        self.persons = person_store or PersonStore(self._telemetry)
        self.outbox = outbox_store or OutboxStore(db, self._settings, self._telemetry)

    @property
    def topic(self) -> str:
        return self._settings.person_events_topic

    async def start(self) -> None:
        """
        Verify the schema once before serving.

        Raises:
            SchemaMismatchError: a column the stores select is missing
        """
        async with self._db.acquire() as conn:
            await verify_schema(conn, {"persons": PERSON_COLUMNS, "outbox": OUTBOX_COLUMNS})
        logger.info("Person service started")

    @asynccontextmanager
    async def _mutation(self, operation: str, attributes: Dict[str, Any]) -> AsyncIterator[Connection]:
        """Span, connection and transaction around one mutation attempt."""
        started = time.perf_counter()
        outcome = "error"
        try:
            with self._telemetry.span(f"person_service.{operation}", attributes):
                async with self._db.acquire() as conn:
                    async with conn.transaction() as tx:
                        yield tx
            outcome = "committed"
            logger.info(f"{operation} committed", extra={"operation": operation, **attributes})
        except PersonServiceError as exc:
            if exc.operation is None:
                exc.operation = operation
            logger.error(
                f"{operation} failed: {exc.message}",
                extra={"operation": operation, "error_code": exc.code.value, **attributes}
            )
            raise
        finally:
            metric_attributes = {"operation": operation, "outcome": outcome}
            self._telemetry.count("person_mutations_total", attributes=metric_attributes)
            self._telemetry.observe(
                "person_mutation_duration_seconds",
                time.perf_counter() - started,
                attributes=metric_attributes
            )

    def _enqueued(self, event_name: PersonEventName) -> None:
        self._telemetry.count("outbox_events_enqueued_total", attributes={"event_name": event_name.value})

    async def create_person(self, new_person: NewPerson) -> Person:
        """
        Insert a person and enqueue a created event.

        Raises:
            ConstraintViolationError: the id already exists
            StorageError: entity or outbox write failed
            TransactionError: begin or commit failed
            DatabaseConnectionError: no connection available
        """
        async with self._mutation("create_person", {"person.id": str(new_person.id)}) as tx:
            person = await self.persons.create(tx, new_person)
            await self.outbox.insert(tx, self.topic, PersonEventName.CREATED.value, person)

        self._enqueued(PersonEventName.CREATED)
        return person

    async def update_person(self, person: PersonUpdate) -> Person:
        """
        Replace a person's name fields and enqueue an updated event.

        Raises:
            PersonNotFoundError: no person has this id
        """
        async with self._mutation("update_person", {"person.id": str(person.id)}) as tx:
            updated = await self.persons.update(tx, person)
            await self.outbox.insert(tx, self.topic, PersonEventName.UPDATED.value, updated)

        self._enqueued(PersonEventName.UPDATED)
        return updated

    async def delete_person(self, person_id: UUID) -> bool:
        """
        Delete a person. A deleted event is enqueued only if a row was removed.

        Returns:
            True if the person existed
        """
        async with self._mutation("delete_person", {"person.id": str(person_id)}) as tx:
            deleted = await self.persons.delete(tx, person_id)
            if deleted:
                await self.outbox.insert(tx, self.topic, PersonEventName.DELETED.value, {"id": person_id})

        if deleted:
            self._enqueued(PersonEventName.DELETED)
        else:
            logger.debug(f"delete_person: person {person_id} did not exist")
        return deleted

    async def get_person(self, person_id: UUID) -> Optional[Person]:
        """Get a person by id, or None."""
        async with self._db.acquire() as conn:
            return await self.persons.get_by_id(conn, person_id)

    async def list_persons(self, offset: int = 0, limit: int = 20) -> List[Person]:
        """
        One page of persons, newest first.

        A limit above the configured maximum page size is clamped.

        Raises:
            InvalidRequestError: negative offset or limit < 1
        """
        if offset < 0:
            raise InvalidRequestError(f"offset must not be negative, got {offset}", operation="list_persons")
        if limit < 1:
            raise InvalidRequestError(f"limit must be at least 1, got {limit}", operation="list_persons")

        max_page = self._settings.persons_max_page_size
        if limit > max_page:
            logger.warning(f"list_persons limit {limit} exceeds maximum, clamped to {max_page}")
            limit = max_page

        async with self._db.acquire() as conn:
            return await self.persons.list(conn, offset, limit)


async def create_person_service(
    settings: Optional[Settings] = None,
    telemetry: Optional[Telemetry] = None
) -> PersonService:
    """Build a started PersonService on the global database adapter."""
    db = await get_database(settings)
    service = PersonService(db, settings, telemetry)
    await service.start()
    return service
