"""Bounded fixed-delay retry.

Every fallible remote step (node init, join, rebalance, readiness) runs
through the same deterministic policy: a fixed number of attempts with a
fixed pause between them, no jitter and no exponential growth.

Example:
    from cbtainers.retry import RetryPolicy, with_retry

    await with_retry(lambda: admin.rebalance(first))

    # Tests swap the clock
    fast = RetryPolicy(attempts=3, delay=5.0, sleep=fake_sleep)
    await with_retry(flaky, fast, on=ServiceNotReady)
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

type Sleep = Callable[[float], Awaitable[None]]

DEFAULT_ATTEMPTS = 3
DEFAULT_DELAY = 5.0


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Retry cadence.

    Attributes:
        attempts: Maximum number of attempts, including the first one.
        delay: Seconds to wait between two failed attempts.
        sleep: Clock used for the pause. Injectable for tests.
    """

    attempts: int = DEFAULT_ATTEMPTS
    delay: float = DEFAULT_DELAY
    sleep: Sleep = asyncio.sleep

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError(f"attempts must be >= 1, got {self.attempts}")
        if self.delay < 0:
            raise ValueError(f"delay must be >= 0, got {self.delay}")


DEFAULT_POLICY = RetryPolicy()


def _log_retry(description: str, attempts: int) -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        wait = state.next_action.sleep if state.next_action else 0.0
        logger.bind(component="retry").warning(
            "{what} attempt {n}/{total} failed: {err}. Waiting {wait:.1f}s...",
            what=description,
            n=state.attempt_number,
            total=attempts,
            err=exc,
            wait=wait,
        )

    return before_sleep


async def with_retry[T](
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy = DEFAULT_POLICY,
    *,
    on: type[BaseException] | tuple[type[BaseException], ...] = Exception,
    description: str = "operation",
) -> T:
    """Run ``operation`` until it succeeds or the policy is exhausted.

    Args:
        operation: Zero-argument coroutine factory, invoked once per attempt.
        policy: Attempt bound, delay and clock.
        on: Exception types that trigger another attempt. Anything else
            propagates immediately.
        description: Label used in retry log lines.

    Returns:
        The value returned by the first successful attempt.

    Raises:
        The exception raised by the final attempt, not the first one.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.attempts),
        wait=wait_fixed(policy.delay),
        retry=retry_if_exception_type(on),
        sleep=policy.sleep,
        before_sleep=_log_retry(description, policy.attempts),
        reraise=True,
    )
    return await retrying(operation)
