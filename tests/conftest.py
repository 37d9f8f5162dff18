"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
import structlog

from deployer.config import (
    CircuitBreakerSettings,
    DeploymentSettings,
    get_settings,
    ObservabilitySettings,
    RetrySettings,
    Settings,
    StateSettings,
)
from deployer.domain.models.deployment import DeploymentRequest, TargetEnvironment
from deployer.domain.ports.services import AuditLog, Monitor
from deployer.domain.services.circuit_breaker import CircuitBreaker
from deployer.domain.services.lock_manager import LockManager
from deployer.domain.services.releases import ReleaseLedger
from deployer.infrastructure.observability import logging as logging_module
from deployer.infrastructure.persistence.in_memory import InMemoryStateStore


class RecordingMonitor(Monitor):
    """Monitor that keeps every metric and alert in memory."""

    def __init__(self) -> None:
        self.metrics: list[tuple[str, float, str, dict[str, str]]] = []
        self.alerts: list[tuple[str, str, str]] = []

    async def send_metric(
        self,
        name: str,
        value: float,
        metric_type: str = "gauge",
        tags: dict[str, str] | None = None,
    ) -> None:
        self.metrics.append((name, value, metric_type, tags or {}))

    async def send_alert(self, severity: str, message: str, component: str) -> None:
        self.alerts.append((severity, message, component))


class RecordingAudit(AuditLog):
    """Audit log that keeps entries in memory."""

    def __init__(self) -> None:
        self.entries: list[dict[str, Any]] = []

    async def record(
        self, actor: str, action: str, resource: str, result: str, **detail: Any
    ) -> None:
        self.entries.append(
            {"actor": actor, "action": action, "resource": resource, "result": result, **detail}
        )


class RecordingSleep:
    """Stand-in for asyncio.sleep that returns immediately."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_logging(monkeypatch: pytest.MonkeyPatch) -> Any:
    """Keep structlog configuration and cached settings from leaking between tests."""
    monkeypatch.setattr(logging_module, "_sink", None)
    get_settings.cache_clear()
    yield
    structlog.reset_defaults()
    get_settings.cache_clear()


@pytest.fixture
def descriptor_dir(tmp_path: Path) -> Path:
    root = tmp_path / "deploy"
    for environment in TargetEnvironment:
        env_dir = root / environment.value
        env_dir.mkdir(parents=True)
        (env_dir / "app.yaml").write_text("kind: Deployment\n")
    return root


@pytest.fixture
def settings(tmp_path: Path, descriptor_dir: Path) -> Settings:
    return Settings(
        deployment=DeploymentSettings(
            descriptor_dir=descriptor_dir,
            build_timeout_seconds=5,
            deploy_timeout_seconds=5,
            rollback_timeout_seconds=5,
            health_timeout_seconds=1,
        ),
        retry=RetrySettings(
            build_max_attempts=3,
            build_initial_delay_seconds=1,
            deploy_max_attempts=3,
            deploy_initial_delay_seconds=2,
            rollback_max_attempts=2,
            rollback_initial_delay_seconds=1,
            health_check_attempts=3,
            health_check_interval_seconds=1,
        ),
        circuit_breaker=CircuitBreakerSettings(failure_threshold=5, recovery_timeout_seconds=60),
        observability=ObservabilitySettings(log_dir=tmp_path / "logs"),
        state=StateSettings(state_dir=tmp_path / "state"),
    )


@pytest.fixture
def store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def lock_manager(store: InMemoryStateStore) -> LockManager:
    return LockManager(store)


@pytest.fixture
def ledger(store: InMemoryStateStore) -> ReleaseLedger:
    return ReleaseLedger(store)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def breaker(store: InMemoryStateStore, clock: FakeClock) -> CircuitBreaker:
    return CircuitBreaker(store, failure_threshold=3, recovery_timeout_seconds=60, clock=clock)


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def monitor() -> RecordingMonitor:
    return RecordingMonitor()


@pytest.fixture
def audit() -> RecordingAudit:
    return RecordingAudit()


@pytest.fixture
def staging_request() -> DeploymentRequest:
    return DeploymentRequest(environment=TargetEnvironment.STAGING, version="v2.0.0")
