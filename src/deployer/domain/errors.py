"""Error taxonomy shared by every deployment component.

Each failure raised inside the deployer is a ``DeploymentError`` subclass
carrying an ``ErrorKind``. The numeric value of the kind is the process exit
code when that error terminates a run.
"""

from __future__ import annotations

import asyncio
from enum import IntEnum


class ErrorKind(IntEnum):
    """Closed set of error classifications and their exit codes."""

    SUCCESS = 0
    GENERIC_FAILURE = 1
    INVALID_ARGUMENTS = 2
    CONFIGURATION_ERROR = 3
    LOCK_HELD = 4
    TIMEOUT = 5
    HEALTH_CHECK_FAILED = 6
    ROLLBACK_FAILED = 7

    @property
    def exit_code(self) -> int:
        return int(self)


class DeploymentError(Exception):
    """Base exception for all classified deployment failures."""

    kind: ErrorKind = ErrorKind.GENERIC_FAILURE


class InvalidArgumentsError(DeploymentError):
    """Raised when the invocation arguments are malformed."""

    kind = ErrorKind.INVALID_ARGUMENTS


class ConfigurationError(DeploymentError):
    """Raised when settings or deployment descriptors are missing or invalid."""

    kind = ErrorKind.CONFIGURATION_ERROR


class LockHeldError(DeploymentError):
    """Raised when another live process owns the scope lock."""

    kind = ErrorKind.LOCK_HELD

    def __init__(self, scope_key: str, owner_pid: int) -> None:
        self.scope_key = scope_key
        self.owner_pid = owner_pid
        super().__init__(f"Lock {scope_key} is held by pid {owner_pid}")


class StepTimeoutError(DeploymentError):
    """Raised when a step attempt exceeds its hard timeout."""

    kind = ErrorKind.TIMEOUT


class CircuitOpenError(DeploymentError):
    """Raised when a call is rejected because the dependency circuit is open."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, dependency: str, retry_in_seconds: float) -> None:
        self.dependency = dependency
        self.retry_in_seconds = retry_in_seconds
        super().__init__(
            f"Circuit {dependency} is open. Retry in {retry_in_seconds:.1f}s"
        )


class HealthCheckFailedError(DeploymentError):
    """Raised when the deployed version never reports ready."""

    kind = ErrorKind.HEALTH_CHECK_FAILED


class RollbackFailedError(DeploymentError):
    """Raised when restoring the previous version fails."""

    kind = ErrorKind.ROLLBACK_FAILED


class CommandFailedError(DeploymentError):
    """Raised when an external command exits non-zero."""

    def __init__(self, command: list[str], returncode: int, output: str = "") -> None:
        self.command = command
        self.returncode = returncode
        self.output = output
        super().__init__(
            f"Command {' '.join(command)!r} exited with {returncode}: {output.strip()}"
        )


class RetryExhaustedError(DeploymentError):
    """Raised when every attempt of a retried operation failed.

    The kind is inherited from the last underlying error so the run exits
    with the code of the failure that actually happened.
    """

    def __init__(self, operation: str, attempts: int, last_error: BaseException) -> None:
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        self.kind = classify(last_error)
        super().__init__(
            f"{operation} failed after {attempts} attempt(s): {last_error}"
        )


def classify(exc: BaseException) -> ErrorKind:
    """Map any exception onto the taxonomy."""
    if isinstance(exc, DeploymentError):
        return exc.kind
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return ErrorKind.TIMEOUT
    return ErrorKind.GENERIC_FAILURE
