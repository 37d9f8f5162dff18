"""Deployment run aggregate with its step state machine."""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum

from pydantic import Field, ValidationError, field_validator

from deployer.domain.errors import ErrorKind, InvalidArgumentsError
from deployer.domain.models.base import DomainEntity, utc_now, ValueObject


VERSION_PATTERN = re.compile(r"v\d+\.\d+\.\d+", re.ASCII)


class TargetEnvironment(str, Enum):
    """Environments a release can be deployed to."""

    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class RunStep(str, Enum):
    """Position of a run in the deployment pipeline."""

    START = "start"
    LOCK_ACQUIRED = "lock_acquired"
    VALIDATED = "validated"
    BUILT = "built"
    DEPLOYED = "deployed"
    HEALTHY = "healthy"
    POST_TASKS_DONE = "post_tasks_done"
    SUCCEEDED = "succeeded"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


class RunStatus(str, Enum):
    """Coarse run outcome."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


# State machine transitions
VALID_TRANSITIONS: dict[RunStep, set[RunStep]] = {
    RunStep.START: {RunStep.LOCK_ACQUIRED, RunStep.FAILED},
    RunStep.LOCK_ACQUIRED: {RunStep.VALIDATED, RunStep.FAILED},
    RunStep.VALIDATED: {RunStep.BUILT, RunStep.FAILED},
    RunStep.BUILT: {RunStep.DEPLOYED, RunStep.FAILED, RunStep.ROLLING_BACK},
    RunStep.DEPLOYED: {RunStep.HEALTHY, RunStep.ROLLING_BACK},
    RunStep.HEALTHY: {RunStep.POST_TASKS_DONE, RunStep.ROLLING_BACK},
    RunStep.POST_TASKS_DONE: {RunStep.SUCCEEDED},
    RunStep.SUCCEEDED: set(),
    RunStep.ROLLING_BACK: {RunStep.ROLLED_BACK, RunStep.FAILED},
    RunStep.ROLLED_BACK: set(),
    RunStep.FAILED: set(),
}


def scope_key_for(environment: TargetEnvironment) -> str:
    """Lock scope shared by every run against ``environment``."""
    return f"deploy-{environment.value}"


class DeploymentRequest(ValueObject):
    """What the operator asked for: a version on an environment."""

    environment: TargetEnvironment
    version: str
    dry_run: bool = False
    debug: bool = False

    @field_validator("version")
    @classmethod
    def _check_version(cls, value: str) -> str:
        if not VERSION_PATTERN.fullmatch(value):
            raise ValueError(f"version {value!r} does not match vMAJOR.MINOR.PATCH")
        return value

    @classmethod
    def parse(
        cls,
        environment: str,
        version: str,
        dry_run: bool = False,
        debug: bool = False,
    ) -> DeploymentRequest:
        """Build a request from raw invocation arguments."""
        try:
            return cls(
                environment=environment,
                version=version,
                dry_run=dry_run,
                debug=debug,
            )
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in exc.errors()
            )
            raise InvalidArgumentsError(problems) from exc

    @property
    def scope_key(self) -> str:
        """Lock scope shared by every run against the same environment."""
        return scope_key_for(self.environment)


class Artifact(ValueObject):
    """A built, versioned deployable."""

    version: str
    reference: str
    built_at: datetime = Field(default_factory=utc_now)


class ReleaseRecord(ValueObject):
    """The version currently serving an environment."""

    environment: TargetEnvironment
    version: str
    deployed_at: datetime = Field(default_factory=utc_now)


class DeploymentRun(DomainEntity):
    """A single pass of the pipeline for one request."""

    request: DeploymentRequest
    current_step: RunStep = RunStep.START
    status: RunStatus = RunStatus.RUNNING
    started_at: datetime = Field(default_factory=utc_now)
    ended_at: datetime | None = None
    artifact: Artifact | None = None
    previous_version: str | None = None
    deploy_started: bool = False
    rollback_attempts: int = 0
    error_kind: ErrorKind = ErrorKind.SUCCESS
    error_message: str = ""
    step_history: list[RunStep] = Field(default_factory=lambda: [RunStep.START])

    def _transition_to(self, new_step: RunStep) -> None:
        """Validate and execute a step transition."""
        if self.is_terminal:
            raise InvalidStateTransitionError(
                f"Run is already {self.status.value}; cannot move to {new_step.value}"
            )
        valid = VALID_TRANSITIONS.get(self.current_step, set())
        if new_step not in valid:
            raise InvalidStateTransitionError(
                f"Cannot transition from {self.current_step.value} to {new_step.value}. "
                f"Valid transitions: {[s.value for s in valid]}"
            )
        self.current_step = new_step
        self.step_history.append(new_step)
        self.touch()

    def lock_acquired(self) -> None:
        self._transition_to(RunStep.LOCK_ACQUIRED)

    def validated(self) -> None:
        self._transition_to(RunStep.VALIDATED)

    def built(self, artifact: Artifact) -> None:
        self.artifact = artifact
        self._transition_to(RunStep.BUILT)

    def begin_deploy(self, previous_version: str | None) -> None:
        """Mark that the target environment may now be mutated."""
        self.previous_version = previous_version
        self.deploy_started = True
        self.touch()

    def deployed(self) -> None:
        self._transition_to(RunStep.DEPLOYED)

    def healthy(self) -> None:
        self._transition_to(RunStep.HEALTHY)

    def post_tasks_done(self) -> None:
        self._transition_to(RunStep.POST_TASKS_DONE)

    def succeed(self) -> None:
        """Finish the run successfully.

        A dry run stops at VALIDATED; a real run must have finished its
        post-deploy tasks.
        """
        if self.is_terminal:
            raise InvalidStateTransitionError(f"Run is already {self.status.value}")
        if not (self.request.dry_run and self.current_step == RunStep.VALIDATED):
            self._transition_to(RunStep.SUCCEEDED)
        self._finish(RunStatus.SUCCEEDED)

    def fail(self, kind: ErrorKind, error_message: str) -> None:
        """Mark the run failed without a rollback."""
        self._record_error(kind, error_message)
        self._transition_to(RunStep.FAILED)
        self._finish(RunStatus.FAILED)

    def start_rollback(self, kind: ErrorKind, error_message: str) -> None:
        """Record the originating failure and enter rollback."""
        if not self.deploy_started:
            raise InvalidStateTransitionError(
                "Rollback is only possible once the deploy step has begun"
            )
        if self.rollback_attempts:
            raise InvalidStateTransitionError("Rollback was already attempted for this run")
        self._record_error(kind, error_message)
        self.rollback_attempts += 1
        self._transition_to(RunStep.ROLLING_BACK)

    def complete_rollback(self) -> None:
        self._transition_to(RunStep.ROLLED_BACK)
        self._finish(RunStatus.ROLLED_BACK)

    def fail_rollback(self, error_message: str) -> None:
        self.error_kind = ErrorKind.ROLLBACK_FAILED
        self.error_message = f"{self.error_message}; rollback failed: {error_message}"
        self._transition_to(RunStep.FAILED)
        self._finish(RunStatus.FAILED)

    def _record_error(self, kind: ErrorKind, error_message: str) -> None:
        self.error_kind = kind
        self.error_message = error_message

    def _finish(self, status: RunStatus) -> None:
        self.status = status
        self.ended_at = utc_now()
        self.touch()

    @property
    def is_terminal(self) -> bool:
        """Check if the run has left RUNNING."""
        return self.status != RunStatus.RUNNING

    @property
    def exit_code(self) -> int:
        return self.error_kind.exit_code

    @property
    def duration_seconds(self) -> float:
        end = self.ended_at or utc_now()
        return (end - self.started_at).total_seconds()


class InvalidStateTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""
