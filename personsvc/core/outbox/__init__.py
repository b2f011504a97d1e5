"""
Transactional Outbox

Events are written in the same transaction as the person mutation they
describe and forwarded by a relay with at-least-once delivery.

Usage:
    from personsvc.core.outbox import OutboxStore, OutboxRelay

    store = OutboxStore(db, settings, telemetry)
    relay = OutboxRelay(store, publisher)
    result = await relay.drain_once()
"""

from .models import OutboxEvent, OutboxStatus, PENDING_STATUSES
from .store import OUTBOX_COLUMNS, OutboxStore, serialize_payload
from .relay import EventPublisher, OutboxRelay, RelayResult

__all__ = [
    "OutboxEvent",
    "OutboxStatus",
    "PENDING_STATUSES",
    "OUTBOX_COLUMNS",
    "OutboxStore",
    "serialize_payload",
    "EventPublisher",
    "OutboxRelay",
    "RelayResult",
]
