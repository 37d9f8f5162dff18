"""Retry engine with exponential backoff.

Mechanical and policy-agnostic: any ``Exception`` raised by the operation
counts as a failed attempt. Cancellation is never retried.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from deployer.domain.errors import RetryExhaustedError
from deployer.domain.models.resilience import RetryPolicy
from deployer.infrastructure.observability.metrics import RETRY_ATTEMPTS


logger = structlog.get_logger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


async def retry(
    policy: RetryPolicy,
    operation: Callable[[], Awaitable[T]],
    *,
    name: str = "operation",
    sleep: Sleep = asyncio.sleep,
    abort_on: tuple[type[BaseException], ...] = (),
) -> T:
    """Run ``operation`` until it succeeds or the policy is exhausted.

    The n-th sleep lasts ``initial_delay * multiplier ** (n - 1)`` seconds.
    An error that is an instance of ``abort_on`` ends the loop at once and
    propagates unwrapped.

    Raises:
        RetryExhaustedError: every attempt failed; carries the attempt count
            and the last error, and is classified like that error.
    """

    def _log_backoff(retry_state: RetryCallState) -> None:
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.debug(
            "retry_backoff",
            operation=name,
            attempt=retry_state.attempt_number,
            delay_seconds=delay,
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(
            multiplier=policy.initial_delay_seconds,
            exp_base=policy.backoff_multiplier,
            min=0,
        ),
        retry=retry_if_exception_type(Exception) & retry_if_not_exception_type(abort_on),
        before_sleep=_log_backoff,
        sleep=sleep,
    )

    try:
        async for attempt in retrying:
            with attempt:
                number = attempt.retry_state.attempt_number
                try:
                    result = await operation()
                except Exception as exc:
                    RETRY_ATTEMPTS.labels(operation=name, outcome="failure").inc()
                    logger.info(
                        "attempt_failed",
                        operation=name,
                        attempt=number,
                        max_attempts=policy.max_attempts,
                        error=str(exc) or type(exc).__name__,
                    )
                    raise
                RETRY_ATTEMPTS.labels(operation=name, outcome="success").inc()
                logger.info(
                    "attempt_succeeded",
                    operation=name,
                    attempt=number,
                    max_attempts=policy.max_attempts,
                )
    except RetryError as exc:
        last = exc.last_attempt
        last_error = last.exception()
        if last_error is None:
            raise
        raise RetryExhaustedError(name, last.attempt_number, last_error) from last_error

    return result
