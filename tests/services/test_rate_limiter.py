"""Tests for the sliding window rate limiter"""

import asyncio
import time

import pytest

from token_aggregator.core.config import Config
from token_aggregator.core.exceptions import ConfigurationError
from token_aggregator.services.providers.rate_limiter import ProviderRateLimiters, RateLimiter


@pytest.mark.asyncio
async def test_requests_within_limit_do_not_wait():
    limiter = RateLimiter(max_requests=5, window_seconds=1.0, name="test")

    start = time.monotonic()
    for _ in range(5):
        await limiter.acquire()

    assert time.monotonic() - start < 0.1
    assert limiter.get_stats()["total_waits"] == 0


@pytest.mark.asyncio
async def test_request_over_limit_waits_for_window():
    limiter = RateLimiter(max_requests=5, window_seconds=1.0, name="test")

    start = time.monotonic()
    for _ in range(6):
        await limiter.acquire()

    assert time.monotonic() - start >= 0.9
    stats = limiter.get_stats()
    assert stats["total_requests"] == 6
    assert stats["total_waits"] >= 1


@pytest.mark.asyncio
async def test_concurrent_callers_respect_limit():
    limiter = RateLimiter(max_requests=3, window_seconds=0.5, name="test")
    finished = []

    async def call(i):
        await limiter.acquire()
        finished.append((i, time.monotonic()))

    start = time.monotonic()
    await asyncio.gather(*(call(i) for i in range(6)))

    late = [t - start for _, t in finished[3:]]
    assert len(finished) == 6
    assert all(elapsed >= 0.45 for elapsed in late)


@pytest.mark.asyncio
async def test_cancelled_waiter_abandons_wait():
    limiter = RateLimiter(max_requests=1, window_seconds=10.0, name="test")
    await limiter.acquire()

    waiter = asyncio.create_task(limiter.acquire())
    await asyncio.sleep(0.05)
    waiter.cancel()

    with pytest.raises(asyncio.CancelledError):
        await waiter
    assert limiter.get_stats()["total_requests"] == 1


@pytest.mark.asyncio
async def test_reset_clears_window():
    limiter = RateLimiter(max_requests=2, window_seconds=10.0, name="test")
    await limiter.acquire()
    await limiter.acquire()

    limiter.reset()

    start = time.monotonic()
    await limiter.acquire()
    assert time.monotonic() - start < 0.1


@pytest.mark.asyncio
async def test_injected_clock_prunes_old_entries():
    now = [100.0]
    limiter = RateLimiter(max_requests=2, window_seconds=1.0, clock=lambda: now[0])
    await limiter.acquire()
    await limiter.acquire()

    now[0] += 1.5
    await limiter.acquire()

    assert limiter.get_stats()["in_window"] == 1


def test_invalid_arguments():
    with pytest.raises(ValueError):
        RateLimiter(max_requests=0)
    with pytest.raises(ValueError):
        RateLimiter(window_seconds=0)


def test_provider_rate_limiters_from_config():
    limiters = ProviderRateLimiters(Config(geckoterminal_rate_limit=30, geckoterminal_rate_window=60))

    gecko = limiters.get_limiter("geckoterminal")
    assert gecko.max_requests == 30
    assert gecko.window_seconds == 60
    assert limiters.get_limiter("GeckoTerminal") is gecko
    assert set(limiters.get_all_stats()) == {"geckoterminal"}

    with pytest.raises(ConfigurationError):
        limiters.get_limiter("unknown")
