"""In-memory state store for development and testing."""

from __future__ import annotations

import copy

from deployer.domain.ports.repositories import Mutator, StateRecord, StateStore


class InMemoryStateStore(StateStore):
    """Dictionary-backed StateStore. Safe within a single event loop."""

    def __init__(self) -> None:
        self._store: dict[str, StateRecord] = {}

    async def read(self, key: str) -> StateRecord | None:
        value = self._store.get(key)
        return copy.deepcopy(value) if value is not None else None

    async def update(self, key: str, mutator: Mutator) -> StateRecord | None:
        new = mutator(await self.read(key))
        if new is None:
            self._store.pop(key, None)
        else:
            self._store[key] = copy.deepcopy(new)
        return new

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)

    async def list_keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._store if k.startswith(prefix))

    def clear(self) -> None:
        """Drop every record. Used by test fixtures for isolation."""
        self._store.clear()
