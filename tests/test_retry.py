"""Tests for the retry policy and async retry helper."""

from __future__ import annotations

import asyncio

import pytest

from mailbox_backup.config.settings import RetrySettings
from mailbox_backup.models.types import BackoffPolicy
from mailbox_backup.sync.retry import RetryPolicy, retry_async


def test_exponential_delays_are_capped() -> None:
    """Exponential backoff doubles per retry up to max_delay_s."""
    policy = RetryPolicy(base_delay_s=1.0, max_delay_s=5.0, jitter_s=0.0)

    assert [policy.delay_for(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_fixed_delays() -> None:
    """Fixed backoff uses the base delay for every retry."""
    policy = RetryPolicy(backoff=BackoffPolicy.fixed, base_delay_s=2.0, jitter_s=0.0)

    assert {policy.delay_for(n) for n in range(1, 6)} == {2.0}


def test_jitter_stays_in_range() -> None:
    """Jitter adds at most jitter_s."""
    policy = RetryPolicy(base_delay_s=1.0, jitter_s=0.5)

    for _ in range(50):
        assert 1.0 <= policy.delay_for(1) <= 1.5


def test_policy_from_settings() -> None:
    """A policy mirrors its settings."""
    policy = RetryPolicy.from_settings(RetrySettings(max_retries=3, backoff=BackoffPolicy.fixed))

    assert policy.max_retries == 3
    assert policy.attempts == 4
    assert policy.backoff == BackoffPolicy.fixed


def test_negative_retries_rejected() -> None:
    """max_retries below zero is rejected."""
    with pytest.raises(ValueError):
        RetryPolicy(max_retries=-1)


def test_retry_async_retries_until_success() -> None:
    """Transient failures are retried and on_retry sees each one."""
    calls = {"n": 0}
    seen: list[int] = []

    async def flaky() -> str:
        calls["n"] += 1
        if calls["n"] < 3:
            raise ConnectionError("reset")
        return "ok"

    policy = RetryPolicy(max_retries=5, base_delay_s=0.0, jitter_s=0.0)
    result = asyncio.run(
        retry_async(flaky, policy=policy, retry_on=(ConnectionError,), on_retry=lambda n, exc: seen.append(n)),
    )

    assert result == "ok"
    assert seen == [1, 2]


def test_retry_async_gives_up_after_max_retries() -> None:
    """The last exception propagates after max_retries + 1 attempts."""
    calls = {"n": 0}

    async def always() -> None:
        calls["n"] += 1
        raise ConnectionError("down")

    policy = RetryPolicy(max_retries=2, base_delay_s=0.0, jitter_s=0.0)
    with pytest.raises(ConnectionError):
        asyncio.run(retry_async(always, policy=policy, retry_on=(ConnectionError,)))

    assert calls["n"] == 3


def test_retry_async_does_not_retry_other_errors() -> None:
    """Exceptions outside retry_on propagate on the first attempt."""
    calls = {"n": 0}

    async def broken() -> None:
        calls["n"] += 1
        raise KeyError("nope")

    policy = RetryPolicy(base_delay_s=0.0, jitter_s=0.0)
    with pytest.raises(KeyError):
        asyncio.run(retry_async(broken, policy=policy, retry_on=(ConnectionError,)))

    assert calls["n"] == 1


def test_retry_async_honours_stop() -> None:
    """No retry is attempted once should_stop returns True."""
    calls = {"n": 0}

    async def always() -> None:
        calls["n"] += 1
        raise ConnectionError("down")

    policy = RetryPolicy(base_delay_s=0.0, jitter_s=0.0)
    with pytest.raises(ConnectionError):
        asyncio.run(retry_async(always, policy=policy, retry_on=(ConnectionError,), should_stop=lambda: True))

    assert calls["n"] == 1
