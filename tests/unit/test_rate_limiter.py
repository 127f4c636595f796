"""Unit tests for incident_agent/core/rate_limiter.py."""

from __future__ import annotations

import asyncio
import time

import pytest

from incident_agent.core.config import Settings
from incident_agent.core.rate_limiter import TokenBucketRateLimiter


class TestTokenBucketRateLimiter:
    def test_initial_tokens(self):
        limiter = TokenBucketRateLimiter(requests_per_minute=30, burst_size=5)
        assert limiter._tokens == 5.0

    def test_from_settings(self):
        settings = Settings(
            _env_file=None, rate_limit_requests_per_minute=90, rate_limit_burst_size=3
        )
        limiter = TokenBucketRateLimiter.from_settings(settings)
        assert limiter.requests_per_minute == 90
        assert limiter.burst_size == 3
        assert limiter._tokens == 3.0

    @pytest.mark.asyncio
    async def test_acquire_consumes_token(self):
        limiter = TokenBucketRateLimiter(requests_per_minute=30, burst_size=5)
        initial = limiter._tokens
        await limiter.acquire()
        assert limiter._tokens < initial

    @pytest.mark.asyncio
    async def test_burst_allows_rapid_requests(self):
        limiter = TokenBucketRateLimiter(requests_per_minute=30, burst_size=5)
        for _ in range(5):
            await limiter.acquire()
        assert limiter._tokens < 1.0

    def test_refill_over_time(self):
        limiter = TokenBucketRateLimiter(requests_per_minute=60, burst_size=3)
        limiter._tokens = 0.0
        # 1 second = 1 token at 60/min
        limiter._last_refill = time.monotonic() - 2.0
        limiter._refill()
        assert limiter._tokens >= 1.5

    def test_refill_caps_at_burst_size(self):
        limiter = TokenBucketRateLimiter(requests_per_minute=60, burst_size=5)
        limiter._last_refill = time.monotonic() - 120.0
        limiter._refill()
        assert limiter._tokens == 5.0

    @pytest.mark.asyncio
    async def test_concurrent_acquire(self):
        """Multiple concurrent acquires should not exceed burst."""
        limiter = TokenBucketRateLimiter(requests_per_minute=600, burst_size=10)
        results = await asyncio.gather(*[limiter.acquire() for _ in range(10)])
        assert len(results) == 10
        assert limiter._tokens < 1.0
