"""Application configuration using pydantic-settings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator, ValidationError
from pydantic_settings import BaseSettings

from deployer.domain.errors import ConfigurationError
from deployer.domain.models.resilience import RetryPolicy


_LOG_LEVELS = {"DEBUG", "INFO", "WARN", "WARNING", "ERROR", "FATAL", "CRITICAL"}


class PlatformMode(str, Enum):
    SIMULATED = "simulated"
    KUBERNETES = "kubernetes"


class DeploymentSettings(BaseSettings):
    """What is deployed and where its descriptors live."""

    app_name: str = Field(default="app", alias="APP_NAME")
    descriptor_dir: Path = Field(default=Path("deploy"), alias="DESCRIPTOR_DIR")
    build_context: Path = Field(default=Path("."), alias="BUILD_CONTEXT")
    registry_endpoint: str = Field(default="", alias="REGISTRY_ENDPOINT")
    platform_mode: PlatformMode = Field(default=PlatformMode.SIMULATED, alias="PLATFORM_MODE")
    kube_namespace: str = Field(default="", alias="KUBE_NAMESPACE")
    build_timeout_seconds: float = Field(default=600.0, gt=0, alias="BUILD_TIMEOUT_SECONDS")
    deploy_timeout_seconds: float = Field(default=300.0, gt=0, alias="DEPLOY_TIMEOUT_SECONDS")
    rollback_timeout_seconds: float = Field(default=300.0, gt=0, alias="ROLLBACK_TIMEOUT_SECONDS")
    health_timeout_seconds: float = Field(default=10.0, gt=0, alias="HEALTH_TIMEOUT_SECONDS")
    health_url: str = Field(default="", alias="HEALTH_URL")
    cache_purge_url: str = Field(default="", alias="CACHE_PURGE_URL")

    @property
    def image_repository(self) -> str:
        if self.registry_endpoint:
            return f"{self.registry_endpoint.rstrip('/')}/{self.app_name}"
        return self.app_name

    model_config = {"env_prefix": "", "extra": "ignore", "populate_by_name": True}


class RetrySettings(BaseSettings):
    """Retry policies per pipeline step."""

    build_max_attempts: int = Field(default=3, ge=1, alias="BUILD_MAX_ATTEMPTS")
    build_initial_delay_seconds: float = Field(default=5.0, ge=0, alias="BUILD_INITIAL_DELAY")
    build_backoff_multiplier: float = Field(default=2.0, ge=1, alias="BUILD_BACKOFF_MULTIPLIER")
    deploy_max_attempts: int = Field(default=3, ge=1, alias="DEPLOY_MAX_ATTEMPTS")
    deploy_initial_delay_seconds: float = Field(default=10.0, ge=0, alias="DEPLOY_INITIAL_DELAY")
    deploy_backoff_multiplier: float = Field(default=2.0, ge=1, alias="DEPLOY_BACKOFF_MULTIPLIER")
    rollback_max_attempts: int = Field(default=2, ge=1, alias="ROLLBACK_MAX_ATTEMPTS")
    rollback_initial_delay_seconds: float = Field(default=5.0, ge=0, alias="ROLLBACK_INITIAL_DELAY")
    health_check_attempts: int = Field(default=30, ge=1, alias="HEALTH_CHECK_ATTEMPTS")
    health_check_interval_seconds: float = Field(default=10.0, ge=0, alias="HEALTH_CHECK_INTERVAL")

    @property
    def build_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.build_max_attempts,
            initial_delay_seconds=self.build_initial_delay_seconds,
            backoff_multiplier=self.build_backoff_multiplier,
        )

    @property
    def deploy_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.deploy_max_attempts,
            initial_delay_seconds=self.deploy_initial_delay_seconds,
            backoff_multiplier=self.deploy_backoff_multiplier,
        )

    @property
    def rollback_policy(self) -> RetryPolicy:
        return RetryPolicy.fixed(self.rollback_max_attempts, self.rollback_initial_delay_seconds)

    @property
    def health_policy(self) -> RetryPolicy:
        return RetryPolicy.fixed(self.health_check_attempts, self.health_check_interval_seconds)

    model_config = {"env_prefix": "", "extra": "ignore", "populate_by_name": True}


class CircuitBreakerSettings(BaseSettings):
    """Circuit breaker thresholds."""

    failure_threshold: int = Field(default=5, ge=1, alias="CIRCUIT_FAILURE_THRESHOLD")
    recovery_timeout_seconds: float = Field(
        default=60.0, ge=0, alias="CIRCUIT_RECOVERY_TIMEOUT_SECONDS"
    )
    enabled: bool = Field(default=True, alias="CIRCUIT_ENABLED")

    model_config = {"env_prefix": "CIRCUIT_", "extra": "ignore", "populate_by_name": True}


class MonitoringSettings(BaseSettings):
    """External monitoring channels. An empty value disables the channel."""

    slack_webhook_url: str = Field(default="", alias="SLACK_WEBHOOK_URL")
    pagerduty_routing_key: str = Field(default="", alias="PAGERDUTY_ROUTING_KEY")
    pagerduty_events_url: str = Field(
        default="https://events.pagerduty.com/v2/enqueue", alias="PAGERDUTY_EVENTS_URL"
    )
    metrics_gateway_url: str = Field(default="", alias="METRICS_GATEWAY_URL")
    metrics_job: str = Field(default="deployer", alias="METRICS_JOB")
    timeout_seconds: float = Field(default=5.0, gt=0, alias="MONITORING_TIMEOUT_SECONDS")

    model_config = {"env_prefix": "", "extra": "ignore", "populate_by_name": True}


class ObservabilitySettings(BaseSettings):
    """Observability configuration."""

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_dir: Path = Field(default=Path(".deployer/logs"), alias="LOG_DIR")
    service_name: str = Field(default="resilient-deployer", alias="SERVICE_NAME")
    tracing_enabled: bool = Field(default=False, alias="TRACING_ENABLED")
    otlp_endpoint: str = Field(default="", alias="OTLP_ENDPOINT")

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        if value.upper() not in _LOG_LEVELS:
            raise ValueError(f"log level must be one of {sorted(_LOG_LEVELS)}")
        return value.upper()

    model_config = {"env_prefix": "OBS_", "extra": "ignore", "populate_by_name": True}


class StateSettings(BaseSettings):
    """Where locks, breaker counters and release records are kept."""

    state_dir: Path = Field(default=Path(".deployer/state"), alias="STATE_DIR")

    model_config = {"env_prefix": "", "extra": "ignore", "populate_by_name": True}


class Settings(BaseSettings):
    """Main application settings."""

    deployment: DeploymentSettings = Field(default_factory=DeploymentSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    circuit_breaker: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)
    state: StateSettings = Field(default_factory=StateSettings)

    model_config = {"env_prefix": "", "extra": "ignore", "populate_by_name": True}


def load_settings() -> Settings:
    """Read settings from the environment, classifying bad values."""
    try:
        return Settings()
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return load_settings()
