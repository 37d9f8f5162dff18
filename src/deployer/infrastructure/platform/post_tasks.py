"""Bookkeeping run after a healthy deploy."""

from __future__ import annotations

import httpx
import structlog

from deployer.domain.models.deployment import DeploymentRun, ReleaseRecord
from deployer.domain.ports.services import PostDeployTask
from deployer.domain.services.releases import ReleaseLedger


logger = structlog.get_logger(__name__)


class RecordReleaseTask(PostDeployTask):
    """Remembers the now-current version so the next run can roll back to it."""

    name = "record-release"

    def __init__(self, ledger: ReleaseLedger) -> None:
        self._ledger = ledger

    async def run(self, deployment_run: DeploymentRun) -> None:
        request = deployment_run.request
        await self._ledger.record(
            ReleaseRecord(environment=request.environment, version=request.version)
        )
        logger.info(
            "release_recorded",
            environment=request.environment.value,
            version=request.version,
        )


class CacheInvalidationTask(PostDeployTask):
    """POSTs to a purge endpoint (CDN or application cache)."""

    name = "cache-invalidation"

    def __init__(
        self,
        purge_url: str,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._purge_url = purge_url
        self._client = client
        self._timeout = timeout_seconds

    async def run(self, deployment_run: DeploymentRun) -> None:
        url = self._purge_url.format(environment=deployment_run.request.environment.value)
        payload = {
            "environment": deployment_run.request.environment.value,
            "version": deployment_run.request.version,
        }
        if self._client is not None:
            response = await self._client.post(url, json=payload, timeout=self._timeout)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, json=payload)
        response.raise_for_status()
        logger.info("cache_invalidated", url=url)
