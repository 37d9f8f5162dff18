"""State store port (hexagonal architecture)."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any


StateRecord = dict[str, Any]
Mutator = Callable[[StateRecord | None], StateRecord | None]


class StateStore(ABC):
    """Port for the durable key/value state shared between runs.

    Holds lock records, circuit breaker counters and release records.
    ``update`` is the only way to change a value and must be atomic with
    respect to other processes using the same store.
    """

    @abstractmethod
    async def read(self, key: str) -> StateRecord | None:
        """Return the record stored under ``key``."""

    @abstractmethod
    async def update(self, key: str, mutator: Mutator) -> StateRecord | None:
        """Atomically replace the record with ``mutator(current)``.

        A mutator returning ``None`` deletes the record. Returns the new value.
        """

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove the record if present."""

    @abstractmethod
    async def list_keys(self, prefix: str = "") -> list[str]:
        """List stored keys starting with ``prefix``."""
