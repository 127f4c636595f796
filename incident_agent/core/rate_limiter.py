"""Async-safe token-bucket rate limiter for outbound reasoning requests.

Keeps the analysis step under the provider's free-tier request quota
(~30 requests/minute) across all worker slots sharing one limiter.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field

from incident_agent.core.config import Settings


@dataclass
class TokenBucketRateLimiter:
    requests_per_minute: int = 30
    burst_size: int = 5

    _tokens: float = field(init=False, default=0.0)
    _last_refill: float = field(init=False, default=0.0)
    _lock: asyncio.Lock = field(init=False, default_factory=asyncio.Lock)

    def __post_init__(self) -> None:
        self._tokens = float(self.burst_size)
        self._last_refill = time.monotonic()

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenBucketRateLimiter":
        return cls(
            requests_per_minute=settings.rate_limit_requests_per_minute,
            burst_size=settings.rate_limit_burst_size,
        )

    async def acquire(self) -> None:
        """Wait until a token is available, then consume one."""
        while True:
            async with self._lock:
                self._refill()
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return
                wait_time = (1.0 - self._tokens) * 60.0 / self.requests_per_minute
            # Sleep outside the lock so other callers can refill/check
            await asyncio.sleep(wait_time)

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_refill
        refill = elapsed * (self.requests_per_minute / 60.0)
        self._tokens = min(self._tokens + refill, float(self.burst_size))
        self._last_refill = now
