import asyncio

import pytest

from chatmap.providers.base import ProviderError, ProviderRateLimitError
from chatmap.utils.async_utils import (
    NonRetryableError,
    RetryableError,
    RetryPolicy,
    compute_delay,
    default_should_retry,
    with_retry,
)


class Flaky:
    """Fails `failures` times with `error`, then returns `value`."""

    def __init__(self, failures, error, value="ok"):
        self.failures = failures
        self.error = error
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.value


def recording_sleep():
    delays = []

    async def sleep(delay):
        delays.append(delay)
    return delays, sleep


@pytest.mark.asyncio
async def test_retries_transient_errors_with_exponential_backoff():
    op = Flaky(2, ProviderError("busy", "svc", status_code=503, retryable=True))
    delays, sleep = recording_sleep()
    policy = RetryPolicy(max_retries=3, initial_delay=1.0, backoff_multiplier=2.0, jitter=False)

    assert await with_retry(op, policy, sleep=sleep) == "ok"
    assert op.calls == 3
    assert delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_gives_up_after_max_retries_and_reraises_last_error():
    error = ProviderRateLimitError("slow down", "svc", status_code=429)
    op = Flaky(10, error)
    delays, sleep = recording_sleep()

    with pytest.raises(ProviderRateLimitError):
        await with_retry(op, RetryPolicy(max_retries=2, jitter=False), sleep=sleep)
    assert op.calls == 3
    assert len(delays) == 2


@pytest.mark.asyncio
async def test_permanent_errors_are_not_retried():
    op = Flaky(5, ProviderError("bad request", "svc", status_code=400, retryable=False))
    delays, sleep = recording_sleep()

    with pytest.raises(ProviderError):
        await with_retry(op, RetryPolicy(max_retries=3), sleep=sleep)
    assert op.calls == 1
    assert delays == []


@pytest.mark.asyncio
async def test_attempt_timeout_counts_as_transient_failure():
    calls = {'n': 0}

    async def slow_then_fast():
        calls['n'] += 1
        if calls['n'] == 1:
            await asyncio.sleep(1)
        return "done"

    delays, sleep = recording_sleep()
    policy = RetryPolicy(max_retries=1, timeout=0.01, jitter=False)
    assert await with_retry(slow_then_fast, policy, sleep=sleep) == "done"
    assert calls['n'] == 2


@pytest.mark.asyncio
async def test_on_retry_receives_error_attempt_and_delay():
    seen = []
    op = Flaky(1, RetryableError("flap"))
    _, sleep = recording_sleep()
    policy = RetryPolicy(max_retries=2, initial_delay=0.5, jitter=False,
                         on_retry=lambda e, attempt, delay: seen.append((str(e), attempt, delay)))

    await with_retry(op, policy, sleep=sleep)
    assert seen == [("flap", 1, 0.5)]


def test_delay_is_capped_and_jitter_is_bounded():
    policy = RetryPolicy(initial_delay=1.0, max_delay=10.0, backoff_multiplier=2.0, jitter=True)
    assert compute_delay(10, policy, rand=lambda: 0.5) == 10.0
    assert compute_delay(2, policy, rand=lambda: 1.0) == pytest.approx(2.5)
    assert compute_delay(2, policy, rand=lambda: 0.0) == pytest.approx(1.5)
    assert compute_delay(1, RetryPolicy(jitter=False)) == 1.0


def test_default_retry_predicate():
    assert default_should_retry(ProviderError("x", status_code=503), 1)
    assert default_should_retry(ProviderRateLimitError("x"), 1)
    assert not default_should_retry(ProviderError("x", status_code=404, retryable=False), 1)
    assert default_should_retry(asyncio.TimeoutError(), 1)
    assert default_should_retry(RetryableError("x"), 1)
    assert not default_should_retry(NonRetryableError("x"), 1)
    assert not default_should_retry(ValueError("x"), 1)
