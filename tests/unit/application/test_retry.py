"""Unit tests for the retry engine."""

from __future__ import annotations

import asyncio

import pytest
from structlog.testing import capture_logs

from deployer.domain.errors import (
    CircuitOpenError,
    ErrorKind,
    RetryExhaustedError,
    StepTimeoutError,
)
from deployer.domain.models.resilience import RetryPolicy
from deployer.domain.services.retry import retry


class Flaky:
    """Operation that fails a given number of times before succeeding."""

    def __init__(self, failures: int, error: Exception | None = None) -> None:
        self.failures = failures
        self.error = error or RuntimeError("transient")
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class TestRetry:
    @pytest.mark.asyncio
    async def test_first_attempt_success_does_not_sleep(self, sleep) -> None:
        operation = Flaky(failures=0)
        result = await retry(RetryPolicy(), operation, name="build", sleep=sleep)
        assert result == "ok"
        assert operation.calls == 1
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(self, sleep) -> None:
        operation = Flaky(failures=2)
        policy = RetryPolicy(max_attempts=3, initial_delay_seconds=5, backoff_multiplier=2)
        assert await retry(policy, operation, name="build", sleep=sleep) == "ok"
        assert operation.calls == 3
        assert sleep.calls == [5, 10]

    @pytest.mark.parametrize("attempts", [1, 2, 3, 5])
    @pytest.mark.asyncio
    async def test_always_failing_runs_exactly_max_attempts(self, sleep, attempts: int) -> None:
        operation = Flaky(failures=100)
        policy = RetryPolicy(max_attempts=attempts, initial_delay_seconds=3, backoff_multiplier=2)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await retry(policy, operation, name="deploy", sleep=sleep)

        assert operation.calls == attempts
        assert sleep.calls == policy.delays()
        assert exc_info.value.attempts == attempts
        assert exc_info.value.operation == "deploy"

    @pytest.mark.asyncio
    async def test_abort_on_stops_immediately(self, sleep) -> None:
        operation = Flaky(failures=100, error=CircuitOpenError("build-registry", 42.0))
        policy = RetryPolicy(max_attempts=5, initial_delay_seconds=1)

        with pytest.raises(CircuitOpenError):
            await retry(policy, operation, name="build", sleep=sleep, abort_on=(CircuitOpenError,))

        assert operation.calls == 1
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_exhaustion_is_classified_like_last_error(self, sleep) -> None:
        operation = Flaky(failures=100, error=StepTimeoutError("deploy exceeded 5s"))
        with pytest.raises(RetryExhaustedError) as exc_info:
            await retry(RetryPolicy(max_attempts=2), operation, name="deploy", sleep=sleep)
        assert exc_info.value.kind == ErrorKind.TIMEOUT
        assert isinstance(exc_info.value.last_error, StepTimeoutError)

    @pytest.mark.asyncio
    async def test_fixed_policy_sleeps_constant(self, sleep) -> None:
        operation = Flaky(failures=100)
        with pytest.raises(RetryExhaustedError):
            await retry(RetryPolicy.fixed(4, 10), operation, name="health_check", sleep=sleep)
        assert sleep.calls == [10, 10, 10]

    @pytest.mark.asyncio
    async def test_logs_each_attempt(self, sleep) -> None:
        operation = Flaky(failures=1)
        with capture_logs() as logs:
            await retry(RetryPolicy(max_attempts=3), operation, name="deploy", sleep=sleep)

        attempts = [e for e in logs if e["event"] in {"attempt_failed", "attempt_succeeded"}]
        assert [(e["event"], e["attempt"]) for e in attempts] == [
            ("attempt_failed", 1),
            ("attempt_succeeded", 2),
        ]
        assert all(e["operation"] == "deploy" for e in attempts)
        assert attempts[0]["max_attempts"] == 3

    @pytest.mark.asyncio
    async def test_cancellation_is_not_retried(self, sleep) -> None:
        calls = 0

        async def cancelled() -> None:
            nonlocal calls
            calls += 1
            raise asyncio.CancelledError

        with pytest.raises(asyncio.CancelledError):
            await retry(RetryPolicy(max_attempts=3), cancelled, name="deploy", sleep=sleep)
        assert calls == 1
        assert sleep.calls == []
