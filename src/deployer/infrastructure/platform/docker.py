"""Container image builder backed by the docker CLI."""

from __future__ import annotations

import structlog

from deployer.config import DeploymentSettings
from deployer.domain.models.deployment import Artifact, DeploymentRequest
from deployer.domain.ports.services import ArtifactBuilder
from deployer.infrastructure.platform.commands import CommandRunner


logger = structlog.get_logger(__name__)


class DockerArtifactBuilder(ArtifactBuilder):
    """Builds ``<registry>/<app>:<version>`` and pushes it when a registry is set."""

    def __init__(self, settings: DeploymentSettings, runner: CommandRunner | None = None) -> None:
        self._settings = settings
        self._runner = runner or CommandRunner()

    def image_reference(self, version: str) -> str:
        return f"{self._settings.image_repository}:{version}"

    async def build(self, request: DeploymentRequest) -> Artifact:
        reference = self.image_reference(request.version)
        logger.info("docker_build", image=reference, context=str(self._settings.build_context))

        await self._runner.run(
            "docker", "build",
            "--tag", reference,
            "--label", f"deployer.environment={request.environment.value}",
            str(self._settings.build_context),
            timeout=self._settings.build_timeout_seconds,
        )
        if self._settings.registry_endpoint:
            logger.info("docker_push", image=reference)
            await self._runner.run(
                "docker", "push", reference,
                timeout=self._settings.build_timeout_seconds,
            )
        return Artifact(version=request.version, reference=reference)
