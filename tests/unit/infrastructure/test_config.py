"""Unit tests for application configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from deployer.config import (
    CircuitBreakerSettings,
    DeploymentSettings,
    get_settings,
    load_settings,
    MonitoringSettings,
    ObservabilitySettings,
    PlatformMode,
    RetrySettings,
    Settings,
)
from deployer.domain.errors import ConfigurationError, ErrorKind


class TestDeploymentSettings:
    def test_defaults(self) -> None:
        settings = DeploymentSettings()
        assert settings.descriptor_dir == Path("deploy")
        assert settings.platform_mode == PlatformMode.SIMULATED
        assert settings.registry_endpoint == ""

    def test_image_repository_without_registry(self) -> None:
        assert DeploymentSettings(app_name="shop").image_repository == "shop"

    def test_image_repository_with_registry(self) -> None:
        settings = DeploymentSettings(app_name="shop", registry_endpoint="registry.local:5000/")
        assert settings.image_repository == "registry.local:5000/shop"

    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PLATFORM_MODE", "kubernetes")
        monkeypatch.setenv("DEPLOY_TIMEOUT_SECONDS", "42")
        settings = DeploymentSettings()
        assert settings.platform_mode == PlatformMode.KUBERNETES
        assert settings.deploy_timeout_seconds == 42


class TestRetrySettings:
    def test_build_policy_is_exponential(self) -> None:
        policy = RetrySettings(
            build_max_attempts=3, build_initial_delay_seconds=5, build_backoff_multiplier=2
        ).build_policy
        assert policy.delays() == [5, 10]

    def test_health_policy_is_fixed(self) -> None:
        policy = RetrySettings(
            health_check_attempts=4, health_check_interval_seconds=10
        ).health_policy
        assert policy.max_attempts == 4
        assert policy.delays() == [10, 10, 10]

    def test_rollback_policy(self) -> None:
        policy = RetrySettings().rollback_policy
        assert policy.max_attempts == 2
        assert policy.backoff_multiplier == 1


class TestOtherSettings:
    def test_circuit_breaker_defaults(self) -> None:
        settings = CircuitBreakerSettings()
        assert settings.failure_threshold == 5
        assert settings.recovery_timeout_seconds == 60
        assert settings.enabled is True

    def test_monitoring_channels_disabled_by_default(self) -> None:
        settings = MonitoringSettings()
        assert settings.slack_webhook_url == ""
        assert settings.pagerduty_routing_key == ""
        assert settings.metrics_gateway_url == ""

    def test_log_level_normalised(self) -> None:
        assert ObservabilitySettings(log_level="warn").log_level == "WARN"

    def test_settings_compose_groups(self) -> None:
        settings = Settings()
        assert isinstance(settings.retry, RetrySettings)
        assert settings.state.state_dir == Path(".deployer/state")


class TestLoadSettings:
    def test_invalid_value_is_configuration_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BUILD_MAX_ATTEMPTS", "0")
        with pytest.raises(ConfigurationError) as exc_info:
            load_settings()
        assert exc_info.value.kind == ErrorKind.CONFIGURATION_ERROR

    def test_invalid_log_level(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LOG_LEVEL", "verbose")
        with pytest.raises(ConfigurationError):
            load_settings()

    def test_get_settings_is_cached(self) -> None:
        assert get_settings() is get_settings()
