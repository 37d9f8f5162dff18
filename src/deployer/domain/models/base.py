"""Base domain model classes."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, Field


def generate_id() -> str:
    """Generate a unique identifier."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


class DomainEntity(BaseModel):
    """Base class for mutable domain entities."""

    id: str = Field(default_factory=generate_id)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    revision: int = Field(default=1)

    def touch(self) -> None:
        """Update the timestamp and bump the revision."""
        self.updated_at = utc_now()
        self.revision += 1

    model_config = {"frozen": False, "validate_assignment": True}


class ValueObject(BaseModel):
    """Base class for value objects (immutable)."""

    model_config = {"frozen": True}
