"""Retry policy and async retry helper with exponential or fixed backoff."""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from mailbox_backup.config.settings import RetrySettings
from mailbox_backup.models.types import BackoffPolicy


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how fast to retry a transient failure.

    A call is attempted at most `max_retries + 1` times.
    """

    max_retries: int = 5
    backoff: BackoffPolicy = BackoffPolicy.exponential
    base_delay_s: float = 1.0
    max_delay_s: float = 30.0
    jitter_s: float = 0.25

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.base_delay_s < 0 or self.max_delay_s < 0 or self.jitter_s < 0:
            raise ValueError("retry delays must be >= 0")

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> RetryPolicy:
        """Build a policy from validated settings."""
        return cls(
            max_retries=settings.max_retries,
            backoff=settings.backoff,
            base_delay_s=settings.base_delay_s,
            max_delay_s=settings.max_delay_s,
            jitter_s=settings.jitter_s,
        )

    @property
    def attempts(self) -> int:
        """Total number of attempts, first try included."""
        return self.max_retries + 1

    def delay_for(self, retry_number: int) -> float:
        """Return the sleep before the given retry (1-based), jitter included.

        Args:
            retry_number: 1 for the first retry, 2 for the second, ...

        Returns:
            Delay in seconds.
        """
        if self.backoff == BackoffPolicy.fixed:
            delay = self.base_delay_s
        else:
            delay = self.base_delay_s * (2 ** (retry_number - 1))
        delay = min(self.max_delay_s, delay)
        if self.jitter_s:
            delay += random.uniform(0, self.jitter_s)
        return delay


async def retry_async[T](
    fn: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    on_retry: Callable[[int, BaseException], None] | None = None,
    should_stop: Callable[[], bool] | None = None,
) -> T:
    """Retry an async callable according to a policy.

    Args:
        fn: Async callable to execute.
        policy: Retry policy.
        retry_on: Exception types worth retrying; anything else propagates at once.
        on_retry: Called with (retry_number, exc) before each sleep.
        should_stop: When it returns True no further retry is attempted.

    Returns:
        Result of the callable.

    Raises:
        BaseException: The last exception once retries are exhausted.
    """
    for attempt in range(1, policy.attempts + 1):
        try:
            return await fn()
        except retry_on as exc:
            if attempt >= policy.attempts or (should_stop is not None and should_stop()):
                raise
            if on_retry is not None:
                on_retry(attempt, exc)
            await asyncio.sleep(policy.delay_for(attempt))
    raise AssertionError("unreachable")
