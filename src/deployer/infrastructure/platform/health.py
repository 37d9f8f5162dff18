"""HTTP readiness probe."""

from __future__ import annotations

import httpx
import structlog

from deployer.domain.models.deployment import TargetEnvironment
from deployer.domain.ports.services import HealthProbe


logger = structlog.get_logger(__name__)


class HttpHealthProbe(HealthProbe):
    """Healthy when the health URL answers with a 2xx status.

    ``url_template`` may reference ``{environment}``, e.g.
    ``https://{environment}.example.com/healthz``.
    """

    def __init__(
        self,
        url_template: str,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._url_template = url_template
        self._client = client
        self._timeout = timeout_seconds

    def url_for(self, environment: TargetEnvironment) -> str:
        return self._url_template.format(environment=environment.value)

    async def check(self, environment: TargetEnvironment) -> bool:
        url = self.url_for(environment)
        try:
            if self._client is not None:
                response = await self._client.get(url, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.get(url)
        except httpx.HTTPError as e:
            logger.debug("health_probe_unreachable", url=url, error=str(e))
            return False

        healthy = response.is_success
        logger.debug("health_probe_response", url=url, status_code=response.status_code)
        return healthy
