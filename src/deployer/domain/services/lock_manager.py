"""Scope lock ensuring one orchestrator process per environment."""

from __future__ import annotations

import os
import socket
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

import psutil
import structlog

from deployer.domain.errors import LockHeldError
from deployer.domain.models.resilience import LockRecord
from deployer.domain.ports.repositories import StateRecord, StateStore
from deployer.infrastructure.observability.metrics import LOCK_OPERATIONS


logger = structlog.get_logger(__name__)


class LockManager:
    """Acquires and releases scope locks kept in the StateStore.

    A record whose owner process is gone is stale and gets reclaimed. Owner
    liveness can only be checked for records written on this host; records
    from another host are always treated as live.
    """

    def __init__(
        self,
        store: StateStore,
        pid_alive: Callable[[int], bool] = psutil.pid_exists,
        pid: int | None = None,
        hostname: str | None = None,
    ) -> None:
        self._store = store
        self._pid_alive = pid_alive
        self._pid = pid if pid is not None else os.getpid()
        self._hostname = hostname if hostname is not None else socket.gethostname()

    @staticmethod
    def key(scope_key: str) -> str:
        return f"lock:{scope_key}"

    async def inspect(self, scope_key: str) -> LockRecord | None:
        """Return the current lock record, if any."""
        current = await self._store.read(self.key(scope_key))
        return LockRecord.model_validate(current) if current is not None else None

    async def acquire(self, scope_key: str) -> LockRecord:
        """Take the lock or raise LockHeldError naming the owner."""
        record = LockRecord(scope_key=scope_key, owner_pid=self._pid, hostname=self._hostname)
        outcome: dict[str, Any] = {}

        def mutate(current: StateRecord | None) -> StateRecord | None:
            if current is not None:
                existing = LockRecord.model_validate(current)
                if self.is_live(existing):
                    outcome["held"] = existing
                    return current
                outcome["stale"] = existing
            return record.model_dump(mode="json")

        await self._store.update(self.key(scope_key), mutate)

        if "held" in outcome:
            holder: LockRecord = outcome["held"]
            LOCK_OPERATIONS.labels(operation="acquire", result="failure").inc()
            logger.info(
                "lock_held",
                scope_key=scope_key,
                owner_pid=holder.owner_pid,
                owner_host=holder.hostname,
                acquired_at=holder.acquired_at.isoformat(),
            )
            raise LockHeldError(scope_key, holder.owner_pid)

        if "stale" in outcome:
            stale: LockRecord = outcome["stale"]
            LOCK_OPERATIONS.labels(operation="reclaim", result="success").inc()
            logger.warning(
                "stale_lock_reclaimed",
                scope_key=scope_key,
                stale_pid=stale.owner_pid,
                acquired_at=stale.acquired_at.isoformat(),
            )

        LOCK_OPERATIONS.labels(operation="acquire", result="success").inc()
        logger.info("lock_acquired", scope_key=scope_key, pid=self._pid)
        return record

    async def release(self, scope_key: str) -> None:
        """Delete the lock record. Safe to call more than once."""
        await self._store.delete(self.key(scope_key))
        LOCK_OPERATIONS.labels(operation="release", result="success").inc()
        logger.info("lock_released", scope_key=scope_key, pid=self._pid)

    @asynccontextmanager
    async def hold(self, scope_key: str) -> AsyncIterator[LockRecord]:
        """Hold the lock for the enclosed block, releasing on every exit path."""
        record = await self.acquire(scope_key)
        try:
            yield record
        finally:
            await self.release(scope_key)

    def is_live(self, record: LockRecord) -> bool:
        """Whether the owner of ``record`` may still be running."""
        if record.hostname and record.hostname != self._hostname:
            return True
        return self._pid_alive(record.owner_pid)
