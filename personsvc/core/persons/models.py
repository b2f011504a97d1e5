"""
Person Models

Pydantic models for the managed entity. Field limits mirror the column
widths of the persons table.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


class PersonEventName(str, Enum):
    """Outbox event names, one per mutation kind."""
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class PersonBase(BaseModel):
    """Name fields shared by every person shape."""

    first_name: str = Field(min_length=1, max_length=50)
    middle_name: Optional[str] = Field(default=None, max_length=50)
    last_name: str = Field(min_length=1, max_length=100)
    suffix: Optional[str] = Field(default=None, max_length=20)


class NewPerson(PersonBase):
    """A person to create. The writer mints the id."""

    id: UUID = Field(default_factory=uuid4)


class PersonUpdate(PersonBase):
    """Full replacement of a person's name fields."""

    id: UUID


class Person(PersonUpdate):
    """A person as persisted."""

    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
