"""Unit tests for the error taxonomy."""

from __future__ import annotations

import asyncio

import pytest

from deployer.domain.errors import (
    CircuitOpenError,
    classify,
    CommandFailedError,
    ConfigurationError,
    DeploymentError,
    ErrorKind,
    HealthCheckFailedError,
    InvalidArgumentsError,
    LockHeldError,
    RetryExhaustedError,
    RollbackFailedError,
    StepTimeoutError,
)


class TestErrorKind:
    @pytest.mark.parametrize(
        ("kind", "code"),
        [
            (ErrorKind.SUCCESS, 0),
            (ErrorKind.GENERIC_FAILURE, 1),
            (ErrorKind.INVALID_ARGUMENTS, 2),
            (ErrorKind.CONFIGURATION_ERROR, 3),
            (ErrorKind.LOCK_HELD, 4),
            (ErrorKind.TIMEOUT, 5),
            (ErrorKind.HEALTH_CHECK_FAILED, 6),
            (ErrorKind.ROLLBACK_FAILED, 7),
        ],
    )
    def test_exit_codes(self, kind: ErrorKind, code: int) -> None:
        assert kind.exit_code == code


class TestClassify:
    @pytest.mark.parametrize(
        ("exc", "kind"),
        [
            (InvalidArgumentsError("bad"), ErrorKind.INVALID_ARGUMENTS),
            (ConfigurationError("missing"), ErrorKind.CONFIGURATION_ERROR),
            (LockHeldError("deploy-dev", 42), ErrorKind.LOCK_HELD),
            (StepTimeoutError("slow"), ErrorKind.TIMEOUT),
            (CircuitOpenError("build-registry", 30.0), ErrorKind.TIMEOUT),
            (HealthCheckFailedError("down"), ErrorKind.HEALTH_CHECK_FAILED),
            (RollbackFailedError("stuck"), ErrorKind.ROLLBACK_FAILED),
            (CommandFailedError(["docker", "build"], 1), ErrorKind.GENERIC_FAILURE),
            (DeploymentError("boom"), ErrorKind.GENERIC_FAILURE),
            (asyncio.TimeoutError(), ErrorKind.TIMEOUT),
            (TimeoutError(), ErrorKind.TIMEOUT),
            (RuntimeError("unexpected"), ErrorKind.GENERIC_FAILURE),
        ],
    )
    def test_classify(self, exc: BaseException, kind: ErrorKind) -> None:
        assert classify(exc) == kind


class TestErrorDetails:
    def test_lock_held_names_owner(self) -> None:
        exc = LockHeldError("deploy-production", 4242)
        assert exc.owner_pid == 4242
        assert "4242" in str(exc)

    def test_command_failed_keeps_output(self) -> None:
        exc = CommandFailedError(["kubectl", "apply"], 2, "forbidden\n")
        assert exc.returncode == 2
        assert "kubectl apply" in str(exc)
        assert "forbidden" in str(exc)

    def test_retry_exhausted_inherits_kind(self) -> None:
        exc = RetryExhaustedError("deploy", 3, StepTimeoutError("deploy exceeded 5s"))
        assert exc.kind == ErrorKind.TIMEOUT
        assert exc.attempts == 3
        assert "after 3 attempt(s)" in str(exc)

    def test_retry_exhausted_generic_for_unknown_error(self) -> None:
        exc = RetryExhaustedError("build", 1, ValueError("nope"))
        assert classify(exc) == ErrorKind.GENERIC_FAILURE
