"""
Person Store

Maps Person models to rows of the persons table. Every method runs on the
connection it is handed; mutating methods expect that connection to be
inside a transaction owned by the caller.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import ValidationError

from ..database.adapter import Connection
from ..errors import PersonNotFoundError, StorageError
from ..observability.telemetry import Telemetry
from .models import NewPerson, Person, PersonUpdate

logger = logging.getLogger(__name__)

# Fixed column order; verified against the live schema at startup
PERSON_COLUMNS = tuple(Person.model_fields)
_COLUMNS = ", ".join(PERSON_COLUMNS)

_SELECT_BY_ID = f"SELECT {_COLUMNS} FROM persons WHERE id = $1"

_LIST = f"""
    SELECT {_COLUMNS} FROM persons
    ORDER BY created_at DESC, id DESC
    LIMIT $1 OFFSET $2
"""

_INSERT = f"""
    INSERT INTO persons (id, first_name, middle_name, last_name, suffix, created_at)
    VALUES ($1, $2, $3, $4, $5, $6)
    RETURNING {_COLUMNS}
"""

_UPDATE = f"""
    UPDATE persons
    SET first_name = $1, middle_name = $2, last_name = $3, suffix = $4, updated_at = $5
    WHERE id = $6
    RETURNING {_COLUMNS}
"""

_DELETE = "DELETE FROM persons WHERE id = $1 RETURNING id"


def _utcnow() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def _to_person(row: Dict[str, Any]) -> Person:
    try:
        return Person.model_validate(row)
    except ValidationError as exc:
        raise StorageError(f"Persons row does not map to a Person: {exc}") from exc


class PersonStore:
    """
    CRUD for persons. Owns no transactions.

    Usage:
        store = PersonStore(telemetry)

        async with db.acquire() as conn:
            async with conn.transaction() as tx:
                person = await store.create(tx, NewPerson(first_name="Ada", last_name="Lovelace"))
    """

    def __init__(self, telemetry: Optional[Telemetry] = None):
        self._telemetry = telemetry or Telemetry.noop()

    async def get_by_id(self, conn: Connection, person_id: UUID) -> Optional[Person]:
        """Point lookup. Absence is None, not an error."""
        with self._telemetry.span("person_store.get_by_id", {"person.id": str(person_id)}):
            row = await conn.fetchrow(_SELECT_BY_ID, person_id)
        return _to_person(row) if row else None

    async def list(self, conn: Connection, offset: int, limit: int) -> List[Person]:
        """Newest first; ties on created_at are broken by id."""
        with self._telemetry.span("person_store.list", {"offset": offset, "limit": limit}):
            rows = await conn.fetch(_LIST, limit, offset)
        return [_to_person(row) for row in rows]

    async def create(self, tx: Connection, new_person: NewPerson) -> Person:
        """
        Insert a new person.

        Args:
            tx: Connection inside the caller's transaction
            new_person: The person to insert, id included

        Returns:
            The row as persisted, created_at included

        Raises:
            ConstraintViolationError: duplicate id
            StorageError: any other write failure
        """
        with self._telemetry.span("person_store.create", {"person.id": str(new_person.id)}):
            row = await tx.fetchrow(
                _INSERT,
                new_person.id,
                new_person.first_name,
                new_person.middle_name,
                new_person.last_name,
                new_person.suffix,
                _utcnow()
            )
            if row is None:
                raise StorageError(
                    f"Insert of person {new_person.id} returned no row",
                    operation="create"
                )

        logger.debug(f"Inserted person {new_person.id}")
        return _to_person(row)

    async def update(self, tx: Connection, person: PersonUpdate) -> Person:
        """
        Replace the name fields of an existing person and stamp updated_at.

        Raises:
            PersonNotFoundError: no row has this id
        """
        with self._telemetry.span("person_store.update", {"person.id": str(person.id)}):
            row = await tx.fetchrow(
                _UPDATE,
                person.first_name,
                person.middle_name,
                person.last_name,
                person.suffix,
                _utcnow(),
                person.id
            )
            if row is None:
                raise PersonNotFoundError(person.id, operation="update")

        logger.debug(f"Updated person {person.id}")
        return _to_person(row)

    async def delete(self, tx: Connection, person_id: UUID) -> bool:
        """Hard delete. False when nothing existed."""
        with self._telemetry.span("person_store.delete", {"person.id": str(person_id)}) as span:
            row = await tx.fetchrow(_DELETE, person_id)
            deleted = row is not None
            span.set_attribute("person.deleted", deleted)

        logger.debug(f"Delete person {person_id}: deleted={deleted}")
        return deleted
