"""File-backed state store.

Each key lives in its own JSON file under the state directory. Writes use
the temp file -> fsync -> os.replace pattern so readers never observe a
partial record, and every read-modify-write cycle holds an exclusive
``flock`` on the store-wide guard file so concurrent processes cannot lose
updates. Blocking file work runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import fcntl
import json
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import structlog

from deployer.domain.ports.repositories import Mutator, StateRecord, StateStore


logger = structlog.get_logger(__name__)

GUARD_FILE = ".state.guard"


class FileStateStore(StateStore):
    """StateStore persisted as one JSON file per key."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, key: str) -> Path:
        """File holding ``key`` (``lock:deploy-dev`` -> ``lock-deploy-dev.json``)."""
        name = key.replace(":", "-", 1).replace(os.sep, "_")
        return self._root / f"{name}.json"

    async def read(self, key: str) -> StateRecord | None:
        return await asyncio.to_thread(self._load, key)

    async def update(self, key: str, mutator: Mutator) -> StateRecord | None:
        return await asyncio.to_thread(self._update, key, mutator)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete, key)

    async def list_keys(self, prefix: str = "") -> list[str]:
        return await asyncio.to_thread(self._list_keys, prefix)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _update(self, key: str, mutator: Mutator) -> StateRecord | None:
        with self._guard():
            current = self._load(key)
            new = mutator(current)
            if new is None:
                self.path_for(key).unlink(missing_ok=True)
            else:
                envelope = {"key": key, "data": new}
                self._atomic_write(
                    self.path_for(key),
                    json.dumps(envelope, default=str, indent=2).encode("utf-8"),
                )
        return new

    def _delete(self, key: str) -> None:
        with self._guard():
            self.path_for(key).unlink(missing_ok=True)

    def _list_keys(self, prefix: str) -> list[str]:
        keys: list[str] = []
        for path in sorted(self._root.glob("*.json")):
            envelope = self._read_envelope(path)
            if envelope is None:
                continue
            key = envelope.get("key", "")
            if key.startswith(prefix):
                keys.append(key)
        return keys

    def _load(self, key: str) -> StateRecord | None:
        envelope = self._read_envelope(self.path_for(key))
        if envelope is None:
            return None
        data = envelope.get("data")
        return data if isinstance(data, dict) else None

    @staticmethod
    def _read_envelope(path: Path) -> dict | None:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            envelope = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("state_record_corrupted", path=str(path))
            return None
        return envelope if isinstance(envelope, dict) else None

    @contextmanager
    def _guard(self) -> Iterator[None]:
        guard_path = self._root / GUARD_FILE
        with open(guard_path, "a") as guard:
            fcntl.flock(guard.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(guard.fileno(), fcntl.LOCK_UN)

    @staticmethod
    def _atomic_write(path: Path, data: bytes) -> None:
        """Write data atomically using temp file -> fsync -> os.replace."""
        fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
        fd_closed = False
        try:
            os.write(fd, data)
            os.fsync(fd)
            os.close(fd)
            fd_closed = True
            os.replace(tmp_path, str(path))
        except BaseException:
            if not fd_closed:
                os.close(fd)
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
