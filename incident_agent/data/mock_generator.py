"""Synthetic diagnostic data for the simulated infrastructure.

Produces randomized logs, metrics and health-check results with a fixed
shape. Pass a seeded ``random.Random`` for reproducible output.
"""

from __future__ import annotations

import random
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from incident_agent.core.models import utcnow

SERVICE_NAMES = (
    "api-gateway",
    "auth-service",
    "payment-service",
    "user-service",
    "notification-service",
    "order-service",
)

LOG_TEMPLATES: dict[str, tuple[str, ...]] = {
    "error": (
        "ERROR: Connection refused to database cluster primary node",
        "ERROR: OutOfMemoryError - heap space exhausted",
        "ERROR: Request timeout after 30000ms - upstream unresponsive",
        "ERROR: SSL handshake failed - certificate expired",
        "ERROR: Unhandled promise rejection - null pointer in handler",
        "ERROR: Circuit breaker OPEN - too many failures in 60s window",
        "ERROR: Disk I/O latency spike - write queue full",
        "ERROR: DNS resolution failed for internal service endpoint",
    ),
    "warn": (
        "WARN: Connection pool nearing capacity (85/100)",
        "WARN: Response time degraded - p99 > 2000ms",
        "WARN: Memory usage above 80% threshold",
        "WARN: Rate limiter triggered - 429 responses increasing",
        "WARN: Stale cache entries detected - TTL misconfiguration",
        "WARN: Goroutine/thread count unusually high",
    ),
    "info": (
        "INFO: Health check passed - all dependencies OK",
        "INFO: Deployment v2.14.3 rolled out successfully",
        "INFO: Auto-scaling triggered - adding 2 replicas",
        "INFO: Cache hit ratio stable at 94%",
        "INFO: Garbage collection completed in 45ms",
    ),
}


class MockDataGenerator:
    """Generates one round of diagnostics for a service."""

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._rng = rng or random.Random()
        self._clock = clock

    def logs(self, service: Optional[str] = None, count: int = 20) -> list[dict[str, Any]]:
        """Log entries sorted oldest first; ~40% error, ~30% warn, ~30% info."""
        rng = self._rng
        service = service or rng.choice(SERVICE_NAMES)
        now = self._clock()

        entries = []
        for i in range(count):
            roll = rng.random()
            if roll < 0.4:
                level = "error"
            elif roll < 0.7:
                level = "warn"
            else:
                level = "info"
            age = timedelta(seconds=(count - i) * rng.random() * 60)
            entries.append(
                {
                    "timestamp": now - age,
                    "level": level,
                    "service": service,
                    "message": rng.choice(LOG_TEMPLATES[level]),
                }
            )

        entries.sort(key=lambda e: e["timestamp"])
        for entry in entries:
            entry["timestamp"] = entry["timestamp"].isoformat()
        return entries

    def metrics(self, service: str) -> dict[str, Any]:
        """A flat numeric snapshot; unhealthy about 60% of the time."""
        rng = self._rng
        unhealthy = rng.random() < 0.6

        def pick(bad: tuple[float, float], good: tuple[float, float], digits: int = 1) -> float:
            low, spread = bad if unhealthy else good
            value = round(low + rng.random() * spread, digits)
            return int(value) if digits == 0 else value

        return {
            "service": service,
            "timestamp": self._clock().isoformat(),
            "cpu_usage_percent": pick((70, 30), (10, 40)),
            "memory_usage_percent": pick((75, 25), (20, 40)),
            "request_rate_per_sec": int(round(50 + rng.random() * 500)),
            "error_rate_percent": pick((5, 40), (0, 2)),
            "p50_latency_ms": pick((200, 800), (10, 50), digits=0),
            "p99_latency_ms": pick((1000, 4000), (50, 200), digits=0),
            "active_connections": int(round(10 + rng.random() * (500 if unhealthy else 100))),
            "pod_count": rng.randint(2, 4),
            "pod_restarts_last_hour": rng.randint(0, 14) if unhealthy else 0,
            "uptime_seconds": rng.randint(1000, 87399),
        }

    def healthcheck(self, service: str) -> dict[str, Any]:
        rng = self._rng
        healthy = rng.random() > 0.3
        if healthy:
            response_ms = round(10 + rng.random() * 50)
            checks = {"http": "pass", "database": "pass", "cache": "pass", "dependencies": "pass"}
        else:
            response_ms = round(500 + rng.random() * 2000)
            checks = {
                "http": "fail",
                "database": "pass" if rng.random() > 0.5 else "fail",
                "cache": "pass",
                "dependencies": "degraded",
            }
        return {
            "service": service,
            "status": "healthy" if healthy else "degraded",
            "response_time": f"{response_ms}ms",
            "checks": checks,
        }
