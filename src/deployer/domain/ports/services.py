"""Service port interfaces (hexagonal architecture)."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from deployer.domain.models.deployment import (
    Artifact,
    DeploymentRequest,
    DeploymentRun,
    TargetEnvironment,
)


class ArtifactBuilder(ABC):
    """Port for producing a versioned artifact."""

    @abstractmethod
    async def build(self, request: DeploymentRequest) -> Artifact:
        """Build and publish the artifact for the requested version."""


class DeploymentTarget(ABC):
    """Port for the platform the artifact runs on."""

    @abstractmethod
    async def apply(self, environment: TargetEnvironment, artifact: Artifact) -> None:
        """Roll the artifact out to the environment."""

    @abstractmethod
    async def rollback(
        self, environment: TargetEnvironment, previous_version: str | None
    ) -> None:
        """Restore the previously active version.

        ``previous_version`` is ``None`` when no release was recorded; the
        platform's own revision history is used instead.
        """

    @abstractmethod
    def describe(self, request: DeploymentRequest) -> list[str]:
        """Human-readable list of the actions a deploy would perform."""


class HealthProbe(ABC):
    """Port for the post-deploy readiness signal."""

    @abstractmethod
    async def check(self, environment: TargetEnvironment) -> bool:
        """Return True when the environment serves the new version."""


class AuditLog(ABC):
    """Port for the append-only audit trail."""

    @abstractmethod
    async def record(
        self, actor: str, action: str, resource: str, result: str, **detail: Any
    ) -> None:
        """Append an audit entry. Never filtered by log level."""


class Monitor(ABC):
    """Port for best-effort metric and alert delivery."""

    @abstractmethod
    async def send_metric(
        self,
        name: str,
        value: float,
        metric_type: str = "gauge",
        tags: dict[str, str] | None = None,
    ) -> None:
        """Publish a metric sample. Must not raise."""

    @abstractmethod
    async def send_alert(self, severity: str, message: str, component: str) -> None:
        """Publish an alert. Must not raise."""


class PostDeployTask(ABC):
    """Best-effort bookkeeping run after a healthy deploy."""

    name: str = "post-task"

    @abstractmethod
    async def run(self, deployment_run: DeploymentRun) -> None:
        """Execute the task."""
