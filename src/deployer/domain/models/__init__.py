"""Domain models package."""

from deployer.domain.models.base import (
    DomainEntity,
    generate_id,
    utc_now,
    ValueObject,
)
from deployer.domain.models.deployment import (
    Artifact,
    DeploymentRequest,
    DeploymentRun,
    InvalidStateTransitionError,
    ReleaseRecord,
    RunStatus,
    RunStep,
    scope_key_for,
    TargetEnvironment,
    VALID_TRANSITIONS,
    VERSION_PATTERN,
)
from deployer.domain.models.resilience import (
    CircuitBreakerState,
    CircuitState,
    LockRecord,
    RetryPolicy,
)


__all__ = [
    "Artifact",
    "CircuitBreakerState",
    "CircuitState",
    "DeploymentRequest",
    "DeploymentRun",
    "DomainEntity",
    "InvalidStateTransitionError",
    "LockRecord",
    "ReleaseRecord",
    "RetryPolicy",
    "RunStatus",
    "RunStep",
    "TargetEnvironment",
    "VALID_TRANSITIONS",
    "VERSION_PATTERN",
    "ValueObject",
    "generate_id",
    "scope_key_for",
    "utc_now",
]
