"""
Async retry utilities for calls to external services.

Retries are composed explicitly at the call site:

    result = await with_retry(lambda: fetch(url), RetryPolicy(max_retries=2))

An operation is retried when `policy.should_retry(error, attempt)` says so,
waiting an exponentially growing (optionally jittered) delay between
attempts. When attempts are exhausted the last error is re-raised unchanged.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import aiohttp

T = TypeVar('T')

logger = logging.getLogger(__name__)

JITTER_FRACTION = 0.25


class RetryableError(Exception):
    """Marks a failure as transient regardless of its cause."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class NonRetryableError(Exception):
    """Marks a failure as permanent; never retried."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


def default_should_retry(error: BaseException, attempt: int) -> bool:
    """Retry timeouts, connection failures, HTTP 5xx and 429; nothing else."""
    if isinstance(error, NonRetryableError):
        return False
    if isinstance(error, RetryableError):
        return True

    marked = getattr(error, 'retryable', None)
    if marked is not None:
        return bool(marked)

    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return True
    if isinstance(error, (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError)):
        return True

    status = getattr(error, 'status', None)
    if status is None:
        status = getattr(error, 'status_code', None)
    if isinstance(status, int):
        return status == 429 or 500 <= status < 600
    return False


@dataclass
class RetryPolicy:
    """Backoff policy. Delays and timeouts are in seconds."""
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    jitter: bool = True
    timeout: Optional[float] = None  # per attempt
    should_retry: Callable[[BaseException, int], bool] = default_should_retry
    on_retry: Optional[Callable[[BaseException, int, float], None]] = None

    @classmethod
    def from_config(cls, retry_config, **overrides) -> "RetryPolicy":
        """Build a policy from a `RetryConfig`, overriding selected fields."""
        values = dict(
            max_retries=retry_config.max_retries,
            initial_delay=retry_config.initial_delay,
            max_delay=retry_config.max_delay,
            backoff_multiplier=retry_config.backoff_multiplier,
            jitter=retry_config.jitter,
        )
        values.update(overrides)
        return cls(**values)


def compute_delay(attempt: int, policy: RetryPolicy, rand: Callable[[], float] = random.random) -> float:
    """Backoff before retry number `attempt` (1-based).

    delay = min(max_delay, initial_delay * multiplier ** (attempt - 1)),
    then jittered by up to +/-25% when enabled. Never negative.
    """
    delay = min(policy.max_delay, policy.initial_delay * policy.backoff_multiplier ** (attempt - 1))
    if policy.jitter:
        delay += delay * JITTER_FRACTION * (rand() * 2 - 1)
    return max(0.0, delay)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run `operation` until it succeeds or the policy gives up.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt
        policy: Retry policy; defaults to `RetryPolicy()`
        sleep: Awaitable sleep used between attempts (injectable for tests)

    Returns:
        The operation's result

    Raises:
        The last error raised by `operation` once retries are exhausted or the
        error is not retryable.
    """
    policy = policy or RetryPolicy()
    attempt = 0
    while True:
        try:
            if policy.timeout is not None:
                return await asyncio.wait_for(operation(), timeout=policy.timeout)
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            attempt += 1
            if attempt > policy.max_retries or not policy.should_retry(e, attempt):
                raise
            delay = compute_delay(attempt, policy)
            if policy.on_retry is not None:
                policy.on_retry(e, attempt, delay)
            logger.debug(
                "Retry %d/%d in %.2fs after %s: %s",
                attempt, policy.max_retries, delay, type(e).__name__, e,
            )
            await sleep(delay)
