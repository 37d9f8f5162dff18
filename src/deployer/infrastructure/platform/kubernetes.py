"""Deployment target backed by kubectl."""

from __future__ import annotations

import structlog

from deployer.config import DeploymentSettings
from deployer.domain.models.deployment import Artifact, DeploymentRequest, TargetEnvironment
from deployer.domain.ports.services import DeploymentTarget
from deployer.infrastructure.platform.commands import CommandRunner


logger = structlog.get_logger(__name__)


class KubectlDeploymentTarget(DeploymentTarget):
    """Applies the environment's manifests and rolls the app's image.

    The namespace defaults to the environment name. The container inside
    the deployment is assumed to share the application's name.
    """

    def __init__(self, settings: DeploymentSettings, runner: CommandRunner | None = None) -> None:
        self._settings = settings
        self._runner = runner or CommandRunner()

    def namespace(self, environment: TargetEnvironment) -> str:
        return self._settings.kube_namespace or environment.value

    @property
    def _deployment(self) -> str:
        return f"deployment/{self._settings.app_name}"

    async def apply(self, environment: TargetEnvironment, artifact: Artifact) -> None:
        namespace = self.namespace(environment)
        manifests = self._settings.descriptor_dir / environment.value
        logger.info(
            "kubectl_apply",
            namespace=namespace,
            manifests=str(manifests),
            image=artifact.reference,
        )
        await self._kubectl("apply", "-f", str(manifests), namespace=namespace)
        await self._set_image(namespace, artifact.reference)
        await self._wait_for_rollout(namespace)

    async def rollback(
        self, environment: TargetEnvironment, previous_version: str | None
    ) -> None:
        namespace = self.namespace(environment)
        if previous_version is None:
            logger.info("kubectl_rollout_undo", namespace=namespace)
            await self._kubectl("rollout", "undo", self._deployment, namespace=namespace)
        else:
            reference = f"{self._settings.image_repository}:{previous_version}"
            logger.info("kubectl_restore_image", namespace=namespace, image=reference)
            await self._set_image(namespace, reference)
        await self._wait_for_rollout(namespace)

    def describe(self, request: DeploymentRequest) -> list[str]:
        namespace = self.namespace(request.environment)
        image = f"{self._settings.image_repository}:{request.version}"
        manifests = self._settings.descriptor_dir / request.environment.value
        return [
            f"docker build --tag {image} {self._settings.build_context}",
            f"kubectl apply -f {manifests} --namespace {namespace}",
            f"kubectl set image {self._deployment} {self._settings.app_name}={image} --namespace {namespace}",
            f"kubectl rollout status {self._deployment} --namespace {namespace}",
        ]

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _set_image(self, namespace: str, reference: str) -> None:
        await self._kubectl(
            "set", "image", self._deployment,
            f"{self._settings.app_name}={reference}",
            namespace=namespace,
        )

    async def _wait_for_rollout(self, namespace: str) -> None:
        timeout = int(self._settings.deploy_timeout_seconds)
        await self._kubectl(
            "rollout", "status", self._deployment, f"--timeout={timeout}s",
            namespace=namespace,
            timeout=self._settings.deploy_timeout_seconds + 5,
        )

    async def _kubectl(self, *args: str, namespace: str, timeout: float | None = None) -> str:
        return await self._runner.run(
            "kubectl", *args, "--namespace", namespace,
            timeout=timeout or self._settings.deploy_timeout_seconds,
        )
