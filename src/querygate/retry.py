"""Exponential-backoff retry for connection establishment.

Only transient connection failures are retried; validation and data errors
surface on the first attempt. Query execution is never wrapped in retry.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from querygate.errors import is_transient

T = TypeVar("T")


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    structlog.get_logger().warning(
        "connect_retry",
        attempt=retry_state.attempt_number,
        sleep_s=round(retry_state.next_action.sleep, 3) if retry_state.next_action else None,
        error=str(exc),
    )


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    base_delay: float = 1.0,
) -> T:
    """Run *operation*, retrying transient failures with delays base, 2*base, 4*base...

    The last exception is re-raised unchanged when attempts run out.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=base_delay),
        retry=retry_if_exception(is_transient),
        before_sleep=_log_retry,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await operation()
    raise AssertionError("unreachable")  # pragma: no cover
