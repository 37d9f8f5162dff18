"""Which version is live on each environment."""

from __future__ import annotations

from deployer.domain.models.deployment import ReleaseRecord, TargetEnvironment
from deployer.domain.ports.repositories import StateRecord, StateStore


class ReleaseLedger:
    """Reads and writes ReleaseRecords in the StateStore."""

    def __init__(self, store: StateStore) -> None:
        self._store = store

    @staticmethod
    def key(environment: TargetEnvironment) -> str:
        return f"release:{environment.value}"

    async def current(self, environment: TargetEnvironment) -> ReleaseRecord | None:
        record = await self._store.read(self.key(environment))
        return ReleaseRecord.model_validate(record) if record is not None else None

    async def record(self, release: ReleaseRecord) -> None:
        payload = release.model_dump(mode="json")

        def mutate(_current: StateRecord | None) -> StateRecord:
            return payload

        await self._store.update(self.key(release.environment), mutate)
