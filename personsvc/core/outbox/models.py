"""
Outbox Models
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


class OutboxStatus(str, Enum):
    """Status of an outbox event."""
    UNPUBLISHED = "unpublished"
    PUBLISHED = "published"
    ERRORED = "errored"
    ABANDONED = "abandoned"  # Reached the retry ceiling


# Statuses a relay may still claim
PENDING_STATUSES = (OutboxStatus.UNPUBLISHED, OutboxStatus.ERRORED)


class OutboxEvent(BaseModel):
    """An entry in the outbox table."""

    id: UUID = Field(default_factory=uuid4)
    topic: str = Field(min_length=1, max_length=255)
    event_name: str = Field(min_length=1, max_length=255)
    payload: str

    status: OutboxStatus = OutboxStatus.UNPUBLISHED
    created_at: datetime = Field(default_factory=_utcnow)
    published_at: Optional[datetime] = None
    error_count: int = Field(default=0, ge=0)
    error_message: Optional[str] = None

    claimed_by: Optional[str] = None
    claimed_at: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        return self.published_at is None and self.status in PENDING_STATUSES

    def payload_data(self) -> Any:
        """Deserialize the JSON payload."""
        return json.loads(self.payload)
