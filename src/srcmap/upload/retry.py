"""Retry policy for upload requests.

Wraps a single fallible async operation in tenacity's ``AsyncRetrying``.
Failures whose status code is in the policy's terminal set are raised on
first occurrence; everything else (network errors, timeouts, 5xx) is
retried with capped exponential backoff until attempts run out.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from srcmap.constants import DEFAULT_MAX_ATTEMPTS, DEFAULT_TERMINAL_STATUS_CODES

logger = logging.getLogger(__name__)

T = TypeVar("T")

OnRetry = Callable[[BaseException, int], None]


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded-attempt retry settings.

    Attributes:
        max_attempts: Total attempts including the first one (>= 1).
        terminal_status_codes: Status codes that are never retried.
        min_wait: First backoff delay in seconds (> 0).
        max_wait: Backoff cap in seconds (>= ``min_wait``).
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    terminal_status_codes: frozenset[int] = DEFAULT_TERMINAL_STATUS_CODES
    min_wait: float = 1.0
    max_wait: float = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.min_wait <= 0:
            raise ValueError(f"min_wait must be > 0, got {self.min_wait}")
        if self.max_wait < self.min_wait:
            raise ValueError(
                f"max_wait ({self.max_wait}) must be >= min_wait ({self.min_wait})"
            )

    def is_retryable(self, error: BaseException) -> bool:
        """Only errors carrying a terminal status code stop the retry loop."""
        if not isinstance(error, Exception):
            return False
        status_code = getattr(error, "status_code", None)
        return status_code not in self.terminal_status_codes

    def wait_strategy(self) -> wait_exponential:
        """Exponential backoff starting at ``min_wait``, capped at ``max_wait``."""
        return wait_exponential(
            multiplier=self.min_wait, min=self.min_wait, max=self.max_wait
        )


async def retry_request(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    on_retry: OnRetry | None = None,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> T:
    """Run *operation* until it succeeds, fails terminally or exhausts attempts.

    Args:
        operation: Zero-argument coroutine factory, invoked once per attempt.
        policy: Attempt limit, terminal codes and backoff bounds.
        on_retry: Called with ``(error, attempt_number)`` before each retry,
            where ``attempt_number`` is the 1-based attempt that just failed.
        sleep: Replacement for ``asyncio.sleep`` between attempts.

    Returns:
        The operation's result.

    Raises:
        The last error raised by *operation*.
    """

    def _before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        logger.debug(
            "Attempt %d/%d failed: %s",
            retry_state.attempt_number,
            policy.max_attempts,
            error,
        )
        if on_retry is not None:
            on_retry(error, retry_state.attempt_number)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=policy.wait_strategy(),
        retry=retry_if_exception(policy.is_retryable),
        before_sleep=_before_sleep,
        reraise=True,
        sleep=sleep or asyncio.sleep,
    )
    async for attempt in retrying:
        with attempt:
            return await operation()

    raise AssertionError("unreachable")  # pragma: no cover
