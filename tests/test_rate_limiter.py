import asyncio
import time

import pytest

from chatmap.utils.rate_limiter import RateLimiter, RateLimiterRegistry


@pytest.mark.asyncio
async def test_minimum_interval_between_requests():
    limiter = RateLimiter(interval=0.05)
    start = time.monotonic()
    for _ in range(3):
        await limiter.acquire()
    elapsed = time.monotonic() - start
    assert elapsed >= 0.09
    assert limiter.get_stats()['admitted'] == 3


@pytest.mark.asyncio
async def test_burst_cap_per_window():
    throttles = []
    limiter = RateLimiter(max_requests=2, window=0.2, on_throttle=throttles.append)
    start = time.monotonic()
    await limiter.acquire()
    await limiter.acquire()
    assert time.monotonic() - start < 0.1
    await limiter.acquire()
    assert time.monotonic() - start >= 0.18
    assert throttles and throttles[0] > 0


@pytest.mark.asyncio
async def test_concurrent_callers_are_admitted_one_interval_apart():
    limiter = RateLimiter(interval=0.03)
    admitted = []

    async def op(i):
        admitted.append(time.monotonic())
        return i

    results = await asyncio.gather(*(limiter.execute(lambda i=i: op(i)) for i in range(4)))
    assert sorted(results) == [0, 1, 2, 3]
    admitted.sort()
    gaps = [b - a for a, b in zip(admitted, admitted[1:])]
    assert all(gap >= 0.025 for gap in gaps)
    assert limiter.get_stats()['throttled'] >= 3


@pytest.mark.asyncio
async def test_operation_runs_outside_admission_lock():
    limiter = RateLimiter()
    release = asyncio.Event()

    async def blocked():
        await release.wait()
        return "slow"

    async def quick():
        return "fast"

    slow_task = asyncio.ensure_future(limiter.execute(blocked))
    await asyncio.sleep(0)
    assert await asyncio.wait_for(limiter.execute(quick), timeout=1) == "fast"
    release.set()
    assert await slow_task == "slow"


@pytest.mark.asyncio
async def test_reset_clears_history():
    limiter = RateLimiter(max_requests=1, window=60)
    await limiter.acquire()
    limiter.reset()
    await asyncio.wait_for(limiter.acquire(), timeout=0.5)
    assert limiter.get_stats()['requests_in_window'] == 1


def test_invalid_limits_are_rejected():
    with pytest.raises(ValueError):
        RateLimiter(interval=-1)
    with pytest.raises(ValueError):
        RateLimiter(max_requests=0)


def test_registry_shares_limiters_by_name():
    registry = RateLimiterRegistry()
    first = registry.get("ors", interval=0.5)
    assert registry.get("ors") is first
    assert registry.get("overpass") is not first
    assert set(registry.get_all_stats()) == {"ors", "overpass"}
