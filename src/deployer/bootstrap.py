"""Wires settings into concrete adapters."""

from __future__ import annotations

from deployer.config import PlatformMode, Settings
from deployer.domain.errors import ConfigurationError
from deployer.domain.ports.repositories import StateStore
from deployer.domain.ports.services import (
    ArtifactBuilder,
    DeploymentTarget,
    HealthProbe,
    PostDeployTask,
)
from deployer.domain.services.circuit_breaker import CircuitBreaker
from deployer.domain.services.deployment_service import DeploymentOrchestrator
from deployer.domain.services.lock_manager import LockManager
from deployer.domain.services.releases import ReleaseLedger
from deployer.infrastructure.monitoring.adapter import MonitoringAdapter
from deployer.infrastructure.observability.audit import AuditTrail
from deployer.infrastructure.persistence.file_store import FileStateStore
from deployer.infrastructure.platform.docker import DockerArtifactBuilder
from deployer.infrastructure.platform.health import HttpHealthProbe
from deployer.infrastructure.platform.kubernetes import KubectlDeploymentTarget
from deployer.infrastructure.platform.post_tasks import CacheInvalidationTask, RecordReleaseTask
from deployer.infrastructure.platform.simulated import (
    SimulatedArtifactBuilder,
    SimulatedDeploymentTarget,
    SimulatedHealthProbe,
)


def build_breaker(settings: Settings, store: StateStore) -> CircuitBreaker:
    return CircuitBreaker(
        store,
        failure_threshold=settings.circuit_breaker.failure_threshold,
        recovery_timeout_seconds=settings.circuit_breaker.recovery_timeout_seconds,
    )


def build_platform(settings: Settings) -> tuple[ArtifactBuilder, DeploymentTarget, HealthProbe]:
    """Builder, target and health probe for the configured platform mode."""
    deployment = settings.deployment
    probe: HealthProbe
    if deployment.health_url:
        probe = HttpHealthProbe(deployment.health_url, timeout_seconds=deployment.health_timeout_seconds)
    elif deployment.platform_mode == PlatformMode.KUBERNETES:
        raise ConfigurationError("HEALTH_URL is required when PLATFORM_MODE=kubernetes")
    else:
        probe = SimulatedHealthProbe()

    if deployment.platform_mode == PlatformMode.KUBERNETES:
        return DockerArtifactBuilder(deployment), KubectlDeploymentTarget(deployment), probe
    return SimulatedArtifactBuilder(deployment.image_repository), SimulatedDeploymentTarget(), probe


def build_orchestrator(settings: Settings) -> DeploymentOrchestrator:
    """Assemble a DeploymentOrchestrator backed by the on-disk state store."""
    store = FileStateStore(settings.state.state_dir)
    releases = ReleaseLedger(store)
    builder, target, probe = build_platform(settings)

    post_tasks: list[PostDeployTask] = [RecordReleaseTask(releases)]
    if settings.deployment.cache_purge_url:
        post_tasks.append(
            CacheInvalidationTask(
                settings.deployment.cache_purge_url,
                timeout_seconds=settings.monitoring.timeout_seconds,
            )
        )

    return DeploymentOrchestrator(
        settings=settings,
        locks=LockManager(store),
        releases=releases,
        builder=builder,
        target=target,
        probe=probe,
        audit=AuditTrail(settings.observability.log_dir),
        monitor=MonitoringAdapter(settings.monitoring),
        breaker=build_breaker(settings, store) if settings.circuit_breaker.enabled else None,
        post_tasks=post_tasks,
    )
