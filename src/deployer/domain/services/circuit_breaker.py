"""Circuit breaker keyed by dependency name.

The breaker has three states:
- CLOSED: calls pass through, failures are counted
- OPEN: calls are rejected without invoking the dependency
- HALF_OPEN: one probe call is in flight after the recovery timeout

State is persisted in the StateStore so an open circuit survives process
restarts. Every transition is a single atomic ``StateStore.update``.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog

from deployer.domain.errors import CircuitOpenError
from deployer.domain.models.resilience import CircuitBreakerState, CircuitState
from deployer.domain.ports.repositories import StateRecord, StateStore
from deployer.infrastructure.observability.metrics import (
    CIRCUIT_REJECTIONS,
    CIRCUIT_TRANSITIONS,
)


logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CircuitBreaker:
    """Fails fast against a dependency that keeps failing.

    Usage::

        breaker = CircuitBreaker(store, failure_threshold=5, recovery_timeout_seconds=60)
        artifact = await breaker.call("build-registry", lambda: builder.build(request))
    """

    def __init__(
        self,
        store: StateStore,
        failure_threshold: int = 5,
        recovery_timeout_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self._store = store
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout_seconds
        self._clock = clock

    @property
    def failure_threshold(self) -> int:
        return self._failure_threshold

    @property
    def recovery_timeout_seconds(self) -> float:
        return self._recovery_timeout

    @staticmethod
    def key(dependency: str) -> str:
        return f"circuit:{dependency}"

    async def state(self, dependency: str) -> CircuitBreakerState:
        """Current persisted state of a dependency's circuit."""
        return self._decode(dependency, await self._store.read(self.key(dependency)))

    async def reset(self, dependency: str) -> None:
        """Force the circuit closed."""
        await self._store.delete(self.key(dependency))
        logger.info("circuit_reset", dependency=dependency)

    async def call(self, dependency: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Invoke ``operation`` unless the dependency's circuit is open."""
        probe = await self._admit(dependency)
        try:
            result = await operation()
        except Exception as exc:
            await self._record_failure(dependency, probe, exc)
            raise
        await self._record_success(dependency)
        return result

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _admit(self, dependency: str) -> bool:
        """Let the call through or raise CircuitOpenError. Returns True for a probe."""
        now = self._clock()
        decision: dict[str, Any] = {"probe": False, "retry_in": None}

        def mutate(current: StateRecord | None) -> StateRecord | None:
            state = self._decode(dependency, current)
            if state.state == CircuitState.CLOSED:
                return current

            if state.state == CircuitState.OPEN:
                elapsed = now - (state.last_failure_at or 0.0)
            else:
                # A probe is in flight; a crashed prober frees the slot after a timeout
                elapsed = now - (state.probe_started_at or 0.0)

            if elapsed < self._recovery_timeout:
                decision["retry_in"] = self._recovery_timeout - elapsed
                return current

            decision["probe"] = True
            return self._encode(
                state.model_copy(
                    update={"state": CircuitState.HALF_OPEN, "probe_started_at": now}
                )
            )

        await self._store.update(self.key(dependency), mutate)

        if decision["retry_in"] is not None:
            CIRCUIT_REJECTIONS.labels(dependency=dependency).inc()
            logger.warning(
                "circuit_rejected",
                dependency=dependency,
                retry_in_seconds=round(decision["retry_in"], 1),
            )
            raise CircuitOpenError(dependency, decision["retry_in"])

        if decision["probe"]:
            self._transitioned(dependency, CircuitState.HALF_OPEN)
        return bool(decision["probe"])

    async def _record_failure(self, dependency: str, probe: bool, exc: Exception) -> None:
        now = self._clock()
        outcome: dict[str, Any] = {}

        def mutate(current: StateRecord | None) -> StateRecord | None:
            state = self._decode(dependency, current)
            if probe or state.state != CircuitState.CLOSED:
                # Failed probe: back to OPEN, timer restarts, count unchanged
                new = state.model_copy(update={
                    "state": CircuitState.OPEN,
                    "last_failure_at": now,
                    "probe_started_at": None,
                })
            else:
                count = state.failure_count + 1
                new = state.model_copy(update={
                    "state": (
                        CircuitState.OPEN if count >= self._failure_threshold
                        else CircuitState.CLOSED
                    ),
                    "failure_count": count,
                    "last_failure_at": now,
                })
            outcome["before"] = state.state
            outcome["after"] = new
            return self._encode(new)

        await self._store.update(self.key(dependency), mutate)

        new_state: CircuitBreakerState = outcome["after"]
        logger.debug(
            "circuit_failure_recorded",
            dependency=dependency,
            failure_count=new_state.failure_count,
            error=str(exc),
        )
        if new_state.state != outcome["before"]:
            self._transitioned(dependency, new_state.state, new_state.failure_count)

    async def _record_success(self, dependency: str) -> None:
        outcome: dict[str, Any] = {}

        def mutate(current: StateRecord | None) -> StateRecord | None:
            if current is None:
                return None
            outcome["before"] = self._decode(dependency, current).state
            return self._encode(CircuitBreakerState(dependency=dependency))

        await self._store.update(self.key(dependency), mutate)

        before = outcome.get("before")
        if before is not None and before != CircuitState.CLOSED:
            self._transitioned(dependency, CircuitState.CLOSED)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _decode(dependency: str, record: StateRecord | None) -> CircuitBreakerState:
        if record is None:
            return CircuitBreakerState(dependency=dependency)
        return CircuitBreakerState.model_validate({**record, "dependency": dependency})

    @staticmethod
    def _encode(state: CircuitBreakerState) -> StateRecord:
        return state.model_dump(mode="json")

    @staticmethod
    def _transitioned(
        dependency: str, state: CircuitState, failure_count: int | None = None
    ) -> None:
        CIRCUIT_TRANSITIONS.labels(dependency=dependency, state=state.value).inc()
        log = logger.warning if state == CircuitState.OPEN else logger.info
        log(
            "circuit_state_changed",
            dependency=dependency,
            state=state.value,
            failure_count=failure_count,
        )
