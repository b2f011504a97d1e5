"""
Outbox Store

Append-only event log written in the same transaction as the entity
mutation it describes, plus the read/ack interface a relay uses to forward
events to a broker.

Event lifecycle:
    unpublished -> published                     (mark_published)
    unpublished -> errored -> ... -> abandoned   (mark_errored, ceiling reached)
    abandoned   -> unpublished                   (retry_abandoned, operator)

A row is pending while published_at IS NULL and error_count is below the
ceiling. Relays claim pending rows with a lease so two relays never get
the same batch; an expired lease makes the row claimable again.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ValidationError
from pydantic_core import PydanticSerializationError, to_jsonable_python

from ..config import Settings, get_settings
from ..database.adapter import Connection, DatabaseAdapter, DatabaseBackend
from ..errors import InvalidRequestError, StorageError
from ..observability.telemetry import Telemetry
from .models import OutboxEvent, OutboxStatus, PENDING_STATUSES

logger = logging.getLogger(__name__)

OUTBOX_COLUMNS = tuple(OutboxEvent.model_fields)
_COLUMNS = ", ".join(OUTBOX_COLUMNS)

ERROR_MESSAGE_MAX_LENGTH = 255

_INSERT = f"""
    INSERT INTO outbox (id, topic, event_name, payload, status, created_at, error_count)
    VALUES ($1, $2, $3, $4, $5, $6, 0)
    RETURNING {_COLUMNS}
"""

# {lock} is FOR UPDATE SKIP LOCKED on PostgreSQL; SQLite serializes writers
_CLAIM_PENDING = """
    UPDATE outbox
    SET claimed_by = $1, claimed_at = $2
    WHERE id IN (
        SELECT id FROM outbox
        WHERE published_at IS NULL
          AND error_count < $3
          AND status IN ($6, $7)
          AND (claimed_at IS NULL OR claimed_at < $4)
        ORDER BY created_at ASC, id ASC
        LIMIT $5
        {lock}
    )
    RETURNING {columns}
"""

_MARK_PUBLISHED = """
    UPDATE outbox
    SET status = $1,
        error_count = 0,
        published_at = COALESCE(published_at, $2),
        claimed_by = NULL,
        claimed_at = NULL
    WHERE id = $3
    RETURNING id
"""

_MARK_ERRORED = """
    UPDATE outbox
    SET error_count = error_count + 1,
        status = CASE WHEN error_count + 1 >= $1 THEN $2 ELSE $3 END,
        error_message = $4,
        claimed_by = NULL,
        claimed_at = NULL
    WHERE id = $5 AND published_at IS NULL {claim}
    RETURNING error_count, status
"""

# A relay whose lease expired must not release a claim another relay now holds
_OWN_CLAIM = "AND (claimed_by IS NULL OR claimed_by = $6)"

_RETRY_ABANDONED = """
    UPDATE outbox
    SET status = $1,
        error_count = 0,
        error_message = NULL,
        claimed_by = NULL,
        claimed_at = NULL
    WHERE id = $2 AND status = $3
    RETURNING id
"""


def _utcnow() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def serialize_payload(payload: Any) -> str:
    """
    Serialize an event payload to deterministic JSON text.

    Pydantic models are dumped in JSON mode; anything else goes through
    pydantic-core's jsonable conversion so UUIDs and datetimes become ISO
    strings. Keys are sorted.

    Raises:
        StorageError: the payload cannot be represented as JSON
    """
    try:
        if isinstance(payload, BaseModel):
            data = payload.model_dump(mode="json")
        else:
            data = to_jsonable_python(payload)
        return json.dumps(data, sort_keys=True, separators=(",", ":"))
    except (PydanticSerializationError, TypeError, ValueError) as exc:
        raise StorageError(f"Event payload is not serializable: {exc}", operation="insert") from exc


def _to_event(row: Dict[str, Any]) -> OutboxEvent:
    try:
        return OutboxEvent.model_validate(row)
    except ValidationError as exc:
        raise StorageError(f"Outbox row does not map to an event: {exc}") from exc


class OutboxStore:
    """
    Outbox table access.

    insert() runs on the caller's transaction. The relay operations
    (get_pending, mark_published, mark_errored) and the audit reads each
    run as one autocommitted statement on a connection of their own.

    Usage:
        store = OutboxStore(db, settings, telemetry)

        async with db.acquire() as conn:
            async with conn.transaction() as tx:
                ...
                await store.insert(tx, "person_events", "created", person)

        for event in await store.get_pending(limit=50):
            ...
            await store.mark_published(event.id)
    """

    def __init__(
        self,
        db: DatabaseAdapter,
        settings: Optional[Settings] = None,
        telemetry: Optional[Telemetry] = None
    ):
        self._db = db
        self._settings = settings or get_settings()
        self._telemetry = telemetry or Telemetry.noop()

    @property
    def max_error_count(self) -> int:
        return self._settings.outbox_max_error_count

    async def insert(
        self,
        tx: Connection,
        topic: str,
        event_name: str,
        payload: Any
    ) -> OutboxEvent:
        """
        Enqueue an event inside the caller's transaction.

        Args:
            tx: Connection inside the transaction that performs the mutation
            topic: Destination topic
            event_name: created, updated or deleted
            payload: Model or JSON-compatible data describing the mutation

        Returns:
            The event as stored, status unpublished

        Raises:
            StorageError: serialization or write failure
        """
        body = serialize_payload(payload)
        event_id = uuid4()

        with self._telemetry.span(
            "outbox_store.insert",
            {"outbox.event_id": str(event_id), "outbox.event_name": event_name, "outbox.topic": topic}
        ):
            row = await tx.fetchrow(
                _INSERT,
                event_id,
                topic,
                event_name,
                body,
                OutboxStatus.UNPUBLISHED.value,
                _utcnow()
            )
            if row is None:
                raise StorageError(f"Insert of outbox event {event_id} returned no row", operation="insert")

        logger.debug(f"Wrote event to outbox: id={event_id} name={event_name} topic={topic}")
        return _to_event(row)

    async def get_pending(self, limit: int = 50, claimed_by: Optional[str] = None) -> List[OutboxEvent]:
        """
        Claim and return up to `limit` pending events, oldest first.

        Rows already claimed by a live lease are skipped, so concurrent
        relays receive disjoint batches. A relay that dies without acking
        loses its claim once the lease expires.

        Args:
            limit: Batch size, clamped to the configured maximum
            claimed_by: Relay identity recorded on the claimed rows

        Raises:
            InvalidRequestError: limit < 1
        """
        if limit < 1:
            raise InvalidRequestError(f"limit must be at least 1, got {limit}", operation="get_pending")
        max_batch = self._settings.outbox_max_batch_size
        if limit > max_batch:
            logger.warning(f"get_pending limit {limit} exceeds maximum, clamped to {max_batch}")
            limit = max_batch

        claimant = claimed_by or f"relay-{uuid4().hex[:8]}"
        now = _utcnow()
        stale_before = now - timedelta(seconds=self._settings.outbox_claim_ttl_seconds)
        query = _CLAIM_PENDING.format(
            lock="FOR UPDATE SKIP LOCKED" if self._db.backend == DatabaseBackend.POSTGRESQL else "",
            columns=_COLUMNS
        )

        with self._telemetry.span("outbox_store.get_pending", {"limit": limit, "outbox.claimed_by": claimant}) as span:
            rows = await self._db.fetch(
                query,
                claimant,
                now,
                self.max_error_count,
                stale_before,
                limit,
                *(status.value for status in PENDING_STATUSES)
            )
            span.set_attribute("outbox.claimed", len(rows))

        events = sorted((_to_event(row) for row in rows), key=lambda e: (e.created_at, e.id))
        if events:
            logger.debug(f"Claimed {len(events)} pending events for {claimant}")
        return events

    async def mark_published(self, event_id: UUID) -> bool:
        """
        Acknowledge successful delivery.

        Idempotent: a repeated call keeps the first published_at. Not guarded
        by the claim: a relay whose lease expired still delivered the event,
        so its ack stands and a later ack from the new claimant is a no-op.

        Returns:
            True if the event exists
        """
        with self._telemetry.span("outbox_store.mark_published", {"outbox.event_id": str(event_id)}):
            row = await self._db.fetchrow(
                _MARK_PUBLISHED,
                OutboxStatus.PUBLISHED.value,
                _utcnow(),
                event_id
            )

        if row is None:
            logger.warning(f"mark_published: outbox event {event_id} not found")
            return False

        self._telemetry.count("outbox_events_published_total")
        logger.debug(f"Outbox event {event_id} published")
        return True

    async def mark_errored(
        self,
        event_id: UUID,
        error_message: Optional[str] = None,
        claimed_by: Optional[str] = None
    ) -> bool:
        """
        Record a failed delivery attempt.

        Increments error_count and releases the claim. When the new count
        reaches the ceiling the event is abandoned and no longer returned by
        get_pending. Published events are left untouched.

        Args:
            event_id: Event that failed to publish
            error_message: Failure reason, truncated to 255 characters
            claimed_by: Relay reporting the failure. When given, the update is
                skipped if another relay has claimed the event since.

        Returns:
            True if an unpublished event matched
        """
        if error_message is not None:
            error_message = error_message[:ERROR_MESSAGE_MAX_LENGTH]

        with self._telemetry.span("outbox_store.mark_errored", {"outbox.event_id": str(event_id)}) as span:
            args = [
                self.max_error_count,
                OutboxStatus.ABANDONED.value,
                OutboxStatus.ERRORED.value,
                error_message,
                event_id
            ]
            if claimed_by is not None:
                args.append(claimed_by)
            row = await self._db.fetchrow(
                _MARK_ERRORED.format(claim=_OWN_CLAIM if claimed_by is not None else ""),
                *args
            )
            if row is not None:
                span.set_attribute("outbox.error_count", row["error_count"])

        if row is None:
            if claimed_by is not None:
                logger.warning(f"mark_errored: no unpublished outbox event {event_id} claimed by {claimed_by}")
            else:
                logger.warning(f"mark_errored: no unpublished outbox event {event_id}")
            return False

        self._telemetry.count("outbox_events_errored_total")
        if row["status"] == OutboxStatus.ABANDONED.value:
            self._telemetry.count("outbox_events_abandoned_total")
            logger.warning(
                f"Outbox event {event_id} abandoned after {row['error_count']} failed attempts: {error_message}"
            )
        else:
            logger.debug(f"Outbox event {event_id} errored ({row['error_count']}/{self.max_error_count})")
        return True

    async def retry_abandoned(self, event_id: UUID) -> bool:
        """
        Reset an abandoned event so relays pick it up again.

        Returns:
            True if an abandoned event was reset
        """
        row = await self._db.fetchrow(
            _RETRY_ABANDONED,
            OutboxStatus.UNPUBLISHED.value,
            event_id,
            OutboxStatus.ABANDONED.value
        )
        if row is None:
            logger.warning(f"retry_abandoned: outbox event {event_id} is not abandoned")
            return False

        logger.info(f"Outbox event {event_id} reset for retry")
        return True

    async def get(self, event_id: UUID) -> Optional[OutboxEvent]:
        """Get one event by id."""
        row = await self._db.fetchrow(f"SELECT {_COLUMNS} FROM outbox WHERE id = $1", event_id)
        return _to_event(row) if row else None

    async def list_events(self, event_name: Optional[str] = None, limit: int = 100) -> List[OutboxEvent]:
        """Recent events, newest first, optionally filtered by name."""
        if event_name:
            rows = await self._db.fetch(
                f"""
                SELECT {_COLUMNS} FROM outbox
                WHERE event_name = $1
                ORDER BY created_at DESC, id DESC
                LIMIT $2
                """,
                event_name, limit
            )
        else:
            rows = await self._db.fetch(
                f"""
                SELECT {_COLUMNS} FROM outbox
                ORDER BY created_at DESC, id DESC
                LIMIT $1
                """,
                limit
            )
        return [_to_event(row) for row in rows]

    async def get_stats(self) -> Dict[str, int]:
        """Event counts per status."""
        rows = await self._db.fetch(
            "SELECT status, COUNT(*) AS count FROM outbox GROUP BY status"
        )
        stats = {status.value: 0 for status in OutboxStatus}
        for row in rows:
            stats[row["status"]] = row["count"]
        return stats
