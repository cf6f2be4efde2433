"""Exponential backoff with jitter for fallible async operations.

Attempt n (0-based) that fails with a retryable error waits

    min(base_delay * backoff_factor ** n * uniform(0.8, 1.2), max_delay)

seconds before the next attempt. The jitter keeps concurrent callers from
retrying in lockstep. With max_retries=2 an operation runs at most 3 times.

Examples:
    >>> url = await with_retry(
    ...     lambda: adapter.post_once(payload),
    ...     max_retries=2,
    ...     should_retry=is_retryable,
    ... )

    >>> policy = RetryPolicy(max_retries=3, base_delay=0.5)
    >>> url = await policy.run(lambda: adapter.post_once(payload))

Tests:
    - tests/unit/test_retry.py
"""

from __future__ import annotations

import logging
import random
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from pydantic import BaseModel, Field

from soulcanvas.core.cancellation import CancellationToken, cancellable_sleep
from soulcanvas.core.errors import CancellationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

JITTER_MIN = 0.8
JITTER_MAX = 1.2


def compute_delay(
    attempt: int,
    base_delay: float,
    backoff_factor: float,
    max_delay: float,
) -> float:
    """Compute the jittered backoff delay for a 0-based attempt number."""
    jitter = random.uniform(JITTER_MIN, JITTER_MAX)
    return min(base_delay * (backoff_factor**attempt) * jitter, max_delay)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 2,
    base_delay: float = 1.0,
    backoff_factor: float = 2.0,
    max_delay: float = 30.0,
    should_retry: Callable[[Exception], bool] | None = None,
    on_retry: Callable[[int, float, Exception], Any] | None = None,
    token: CancellationToken | None = None,
) -> T:
    """Run an operation, retrying failures with exponential backoff.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt.
        max_retries: Retries after the first attempt.
        base_delay: Delay before the first retry (seconds).
        backoff_factor: Multiplier applied per attempt.
        max_delay: Upper bound for any single delay (seconds).
        should_retry: Predicate deciding whether an error is worth retrying.
            Defaults to retrying every error.
        on_retry: Called as on_retry(attempt_number, delay, error) before
            each backoff sleep.
        token: Cancellation token checked before every attempt and during sleeps.

    Returns:
        The operation's result.

    Raises:
        Exception: The last error, when it is not retryable or retries ran out.
        CancellationError: Immediately, never retried.
    """
    attempt = 0
    while True:
        if token is not None:
            token.raise_if_cancelled()
        try:
            return await operation()
        except CancellationError:
            raise
        except Exception as e:
            if attempt >= max_retries or (should_retry is not None and not should_retry(e)):
                raise

            delay = compute_delay(attempt, base_delay, backoff_factor, max_delay)
            if on_retry is not None:
                on_retry(attempt + 1, delay, e)
            else:
                logger.warning(
                    f"Attempt {attempt + 1}/{max_retries + 1} failed: {e}. "
                    f"Retrying in {delay:.1f}s..."
                )

            await cancellable_sleep(delay, token)
            attempt += 1


class RetryPolicy(BaseModel):
    """Retry settings for one adapter.

    Attributes:
        max_retries: Retries after the first attempt
        base_delay: Delay before the first retry (seconds)
        backoff_factor: Multiplier applied per attempt
        max_delay: Upper bound for a single delay (seconds)
    """

    max_retries: int = Field(default=2, ge=0, le=10)
    base_delay: float = Field(default=1.0, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1)
    max_delay: float = Field(default=30.0, ge=0)

    @classmethod
    def from_settings(cls, settings: Any) -> "RetryPolicy":
        """Build the policy from application settings."""
        return cls(
            max_retries=settings.RETRY_MAX_RETRIES,
            base_delay=settings.RETRY_BASE_DELAY,
            backoff_factor=settings.RETRY_BACKOFF_FACTOR,
            max_delay=settings.RETRY_MAX_DELAY,
        )

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        should_retry: Callable[[Exception], bool] | None = None,
        on_retry: Callable[[int, float, Exception], Any] | None = None,
        token: CancellationToken | None = None,
    ) -> T:
        """Run an operation under this policy (see with_retry)."""
        return await with_retry(
            operation,
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            backoff_factor=self.backoff_factor,
            max_delay=self.max_delay,
            should_retry=should_retry,
            on_retry=on_retry,
            token=token,
        )
