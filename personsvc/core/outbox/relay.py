"""
Outbox Relay

Glue between the outbox and a broker: claim a batch of pending events,
publish each one, and acknowledge it as published or errored. Delivery is
at-least-once; consumers must tolerate duplicates. Polling cadence and
back-off belong to whoever calls drain_once().
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional, Protocol
from uuid import uuid4

from ..observability.telemetry import Telemetry
from ..observability.tracing import add_event_to_span
from .models import OutboxEvent
from .store import OutboxStore

logger = logging.getLogger(__name__)


class EventPublisher(Protocol):
    """Forwards one event to a broker. Raises on failure."""

    async def publish(self, event: OutboxEvent) -> None:
        ...


@dataclass
class RelayResult:
    """Outcome of one drain pass."""
    claimed: int = 0
    published: int = 0
    errored: int = 0


class OutboxRelay:
    """
    Drains the outbox one batch at a time.

    Usage:
        relay = OutboxRelay(store, publisher)
        while running:
            result = await relay.drain_once()
            if result.claimed == 0:
                await asyncio.sleep(poll_interval)
    """

    def __init__(
        self,
        store: OutboxStore,
        publisher: EventPublisher,
        relay_id: Optional[str] = None,
        batch_size: int = 50,
        telemetry: Optional[Telemetry] = None
    ):
        self.store = store
        self.publisher = publisher
        self.relay_id = relay_id or f"relay-{uuid4().hex[:8]}"
        self.batch_size = batch_size
        self._telemetry = telemetry or Telemetry.noop()

    async def drain_once(self) -> RelayResult:
        """
        Claim one batch and publish it.

        A failed publish is recorded with mark_errored and does not stop the
        batch. Failures of the store itself propagate.
        """
        result = RelayResult()
        started = time.perf_counter()

        with self._telemetry.span("outbox_relay.drain_once", {"outbox.relay_id": self.relay_id}) as span:
            events = await self.store.get_pending(self.batch_size, claimed_by=self.relay_id)
            result.claimed = len(events)

            for event in events:
                try:
                    await self.publisher.publish(event)
                except Exception as e:
                    logger.warning(
                        f"Publish of outbox event {event.id} ({event.event_name}) failed: {e}"
                    )
                    add_event_to_span(
                        "outbox.publish_failed",
                        {"outbox.event_id": str(event.id), "error": str(e)},
                        span
                    )
                    await self.store.mark_errored(event.id, str(e), claimed_by=self.relay_id)
                    result.errored += 1
                    continue

                await self.store.mark_published(event.id)
                result.published += 1

            span.set_attribute("outbox.published", result.published)
            span.set_attribute("outbox.errored", result.errored)

        self._telemetry.observe("outbox_relay_batch_size", result.claimed)
        if result.claimed:
            logger.info(
                f"Relay {self.relay_id} drained {result.claimed} events: "
                f"{result.published} published, {result.errored} errored "
                f"in {time.perf_counter() - started:.3f}s"
            )
        return result
