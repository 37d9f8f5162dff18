"""Value objects for retry, circuit breaking and locking."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import Field

from deployer.domain.models.base import utc_now, ValueObject


class RetryPolicy(ValueObject):
    """Bounded attempts with exponential backoff between them."""

    max_attempts: int = Field(default=3, ge=1)
    initial_delay_seconds: float = Field(default=5.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)

    @classmethod
    def fixed(cls, max_attempts: int, delay_seconds: float) -> RetryPolicy:
        """Constant delay between attempts."""
        return cls(
            max_attempts=max_attempts,
            initial_delay_seconds=delay_seconds,
            backoff_multiplier=1.0,
        )

    @classmethod
    def single(cls) -> RetryPolicy:
        return cls(max_attempts=1, initial_delay_seconds=0)

    def delays(self) -> list[float]:
        """The sleeps taken between attempts when every attempt fails."""
        return [
            self.initial_delay_seconds * self.backoff_multiplier ** n
            for n in range(self.max_attempts - 1)
        ]


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerState(ValueObject):
    """Persisted failure counter for one dependency."""

    dependency: str
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = Field(default=0, ge=0)
    last_failure_at: float | None = None
    probe_started_at: float | None = None


class LockRecord(ValueObject):
    """Ownership marker for a lock scope."""

    scope_key: str
    owner_pid: int
    hostname: str = ""
    acquired_at: datetime = Field(default_factory=utc_now)
