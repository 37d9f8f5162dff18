"""Simulated platform adapters for development and testing.

They keep state in memory and never touch a real registry or cluster,
while honouring the same contracts as the docker/kubectl adapters.
"""

from __future__ import annotations

import asyncio

import structlog

from deployer.domain.errors import CommandFailedError
from deployer.domain.models.deployment import Artifact, DeploymentRequest, TargetEnvironment
from deployer.domain.ports.services import ArtifactBuilder, DeploymentTarget, HealthProbe


logger = structlog.get_logger(__name__)


class SimulatedArtifactBuilder(ArtifactBuilder):
    """Produces an artifact reference without building anything."""

    def __init__(self, repository: str = "app", failures: int = 0, delay: float = 0.0) -> None:
        self._repository = repository
        self._failures_left = failures
        self._delay = delay
        self.calls = 0

    async def build(self, request: DeploymentRequest) -> Artifact:
        self.calls += 1
        await asyncio.sleep(self._delay)
        if self._failures_left:
            self._failures_left -= 1
            raise CommandFailedError(["docker", "build"], 1, "registry unavailable")
        reference = f"{self._repository}:{request.version}"
        logger.info("simulated_build", image=reference)
        return Artifact(version=request.version, reference=reference)


class SimulatedDeploymentTarget(DeploymentTarget):
    """Tracks the active version per environment in memory.

    ``apply_failures``/``rollback_failures`` make the first N calls fail;
    a negative value makes every call fail.
    """

    def __init__(
        self,
        apply_failures: int = 0,
        rollback_failures: int = 0,
        apply_delay: float = 0.0,
    ) -> None:
        self._apply_failures = apply_failures
        self._rollback_failures = rollback_failures
        self._apply_delay = apply_delay
        self.active: dict[TargetEnvironment, str] = {}
        self.apply_calls = 0
        self.rollback_calls: list[str | None] = []

    async def apply(self, environment: TargetEnvironment, artifact: Artifact) -> None:
        self.apply_calls += 1
        await asyncio.sleep(self._apply_delay)
        if self._apply_failures:
            self._apply_failures -= 1 if self._apply_failures > 0 else 0
            raise CommandFailedError(["kubectl", "apply"], 1, "rollout failed")
        self.active[environment] = artifact.version
        logger.info("simulated_apply", environment=environment.value, version=artifact.version)

    async def rollback(
        self, environment: TargetEnvironment, previous_version: str | None
    ) -> None:
        self.rollback_calls.append(previous_version)
        if self._rollback_failures:
            self._rollback_failures -= 1 if self._rollback_failures > 0 else 0
            raise CommandFailedError(["kubectl", "rollout", "undo"], 1, "rollback failed")
        if previous_version is None:
            self.active.pop(environment, None)
        else:
            self.active[environment] = previous_version
        logger.info(
            "simulated_rollback",
            environment=environment.value,
            version=previous_version,
        )

    def describe(self, request: DeploymentRequest) -> list[str]:
        return [
            f"build artifact for {request.version}",
            f"apply {request.version} to {request.environment.value}",
        ]


class SimulatedHealthProbe(HealthProbe):
    """Reports unhealthy for the first ``unhealthy_checks`` polls (negative: forever)."""

    def __init__(self, unhealthy_checks: int = 0) -> None:
        self._unhealthy_left = unhealthy_checks
        self.checks = 0

    async def check(self, environment: TargetEnvironment) -> bool:  # noqa: ARG002
        self.checks += 1
        if self._unhealthy_left:
            self._unhealthy_left -= 1 if self._unhealthy_left > 0 else 0
            return False
        return True
