"""Unit tests for the circuit breaker."""

from __future__ import annotations

import pytest
from structlog.testing import capture_logs

from deployer.domain.errors import CircuitOpenError, ErrorKind
from deployer.domain.models.resilience import CircuitState
from deployer.domain.services.circuit_breaker import CircuitBreaker
from deployer.infrastructure.persistence.in_memory import InMemoryStateStore

DEP = "build-registry"


class Operation:
    def __init__(self, fail: bool = True) -> None:
        self.fail = fail
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.fail:
            raise RuntimeError("registry unavailable")
        return "artifact"


async def _trip(breaker: CircuitBreaker, times: int) -> None:
    failing = Operation()
    for _ in range(times):
        with pytest.raises(RuntimeError):
            await breaker.call(DEP, failing)


class TestCircuitBreaker:
    @pytest.mark.asyncio
    async def test_closed_passes_through(self, breaker: CircuitBreaker) -> None:
        assert await breaker.call(DEP, Operation(fail=False)) == "artifact"
        assert (await breaker.state(DEP)).state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_counts_failures_below_threshold(self, breaker: CircuitBreaker) -> None:
        await _trip(breaker, 2)
        state = await breaker.state(DEP)
        assert state.state == CircuitState.CLOSED
        assert state.failure_count == 2

    @pytest.mark.asyncio
    async def test_opens_at_threshold_and_rejects_without_calling(
        self, breaker: CircuitBreaker
    ) -> None:
        await _trip(breaker, 3)
        assert (await breaker.state(DEP)).state == CircuitState.OPEN

        operation = Operation(fail=False)
        with capture_logs() as logs:
            with pytest.raises(CircuitOpenError) as exc_info:
                await breaker.call(DEP, operation)

        assert operation.calls == 0
        assert exc_info.value.kind == ErrorKind.TIMEOUT
        assert exc_info.value.retry_in_seconds == pytest.approx(60)
        assert any(e["event"] == "circuit_rejected" for e in logs)

    @pytest.mark.asyncio
    async def test_success_resets_consecutive_count(self, breaker: CircuitBreaker) -> None:
        await _trip(breaker, 2)
        await breaker.call(DEP, Operation(fail=False))
        await _trip(breaker, 2)
        state = await breaker.state(DEP)
        assert state.state == CircuitState.CLOSED
        assert state.failure_count == 2

    @pytest.mark.asyncio
    async def test_half_open_probe_success_closes(self, breaker: CircuitBreaker, clock) -> None:
        await _trip(breaker, 3)
        clock.advance(60)

        assert await breaker.call(DEP, Operation(fail=False)) == "artifact"
        state = await breaker.state(DEP)
        assert state.state == CircuitState.CLOSED
        assert state.failure_count == 0

    @pytest.mark.asyncio
    async def test_half_open_probe_failure_reopens_with_count_unchanged(
        self, breaker: CircuitBreaker, clock
    ) -> None:
        await _trip(breaker, 3)
        clock.advance(61)
        await _trip(breaker, 1)

        state = await breaker.state(DEP)
        assert state.state == CircuitState.OPEN
        assert state.failure_count == 3
        assert state.last_failure_at == clock.now

        # The recovery timer restarts from the probe failure
        clock.advance(30)
        with pytest.raises(CircuitOpenError):
            await breaker.call(DEP, Operation(fail=False))

    @pytest.mark.asyncio
    async def test_only_one_probe_while_half_open(
        self, store: InMemoryStateStore, clock
    ) -> None:
        breaker = CircuitBreaker(store, failure_threshold=1, recovery_timeout_seconds=10, clock=clock)
        await _trip(breaker, 1)
        clock.advance(10)

        second = Operation(fail=False)

        async def probe() -> str:
            # A concurrent caller arrives while the probe is in flight
            with pytest.raises(CircuitOpenError):
                await breaker.call(DEP, second)
            return "artifact"

        assert await breaker.call(DEP, probe) == "artifact"
        assert second.calls == 0
        assert (await breaker.state(DEP)).state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_abandoned_probe_is_readmitted(self, store: InMemoryStateStore, clock) -> None:
        breaker = CircuitBreaker(store, failure_threshold=1, recovery_timeout_seconds=10, clock=clock)
        await _trip(breaker, 1)
        clock.advance(10)
        # Simulate a prober that crashed after being admitted
        await breaker._admit(DEP)
        assert (await breaker.state(DEP)).state == CircuitState.HALF_OPEN

        clock.advance(10)
        assert await breaker.call(DEP, Operation(fail=False)) == "artifact"

    @pytest.mark.asyncio
    async def test_state_survives_new_instance(self, store: InMemoryStateStore, clock) -> None:
        first = CircuitBreaker(store, failure_threshold=2, clock=clock)
        await _trip(first, 2)

        second = CircuitBreaker(store, failure_threshold=2, clock=clock)
        with pytest.raises(CircuitOpenError):
            await second.call(DEP, Operation(fail=False))

    @pytest.mark.asyncio
    async def test_reset_closes(self, breaker: CircuitBreaker) -> None:
        await _trip(breaker, 3)
        await breaker.reset(DEP)
        assert (await breaker.state(DEP)).state == CircuitState.CLOSED

    def test_rejects_invalid_threshold(self, store: InMemoryStateStore) -> None:
        with pytest.raises(ValueError):
            CircuitBreaker(store, failure_threshold=0)
