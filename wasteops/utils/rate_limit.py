"""In-memory token-bucket rate limiter, one bucket per client key.

Each client (``X-Forwarded-For`` first hop, else the peer address) may spend
``max_requests`` tokens; the bucket refills continuously at
``max_requests / window_seconds`` tokens per second.  A request arriving at
an empty bucket is rejected with TooManyRequests instead of waiting.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from starlette.requests import HTTPConnection

from wasteops.errors import TooManyRequests

logger = logging.getLogger("wasteops.rate_limit")

# Idle buckets are dropped once this many clients are tracked.
_MAX_TRACKED_KEYS = 10_000


class _Bucket:
    def __init__(self, capacity: int, refill_per_second: float, now: float) -> None:
        self._capacity = float(capacity)
        self._rate = refill_per_second
        self._tokens = float(capacity)
        self.last_seen = now

    def try_acquire(self, now: float) -> bool:
        elapsed = now - self.last_seen
        self._tokens = min(self._capacity, self._tokens + elapsed * self._rate)
        self.last_seen = now
        if self._tokens >= 1.0:
            self._tokens -= 1.0
            return True
        return False

    def retry_after(self) -> float:
        return max(0.0, (1.0 - self._tokens) / self._rate)


class RateLimiter:
    """Per-key limiter; ``max_requests <= 0`` disables it."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._buckets: dict[str, _Bucket] = {}
        self._lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return self.max_requests > 0 and self.window_seconds > 0

    async def acquire(self, key: str) -> None:
        """Consume one token for *key* or raise TooManyRequests."""
        if not self.enabled:
            return
        async with self._lock:
            now = self._clock()
            bucket = self._buckets.get(key)
            if bucket is None:
                if len(self._buckets) >= _MAX_TRACKED_KEYS:
                    self._prune(now)
                bucket = _Bucket(self.max_requests, self.max_requests / self.window_seconds, now)
                self._buckets[key] = bucket
            if bucket.try_acquire(now):
                return
            retry_after = bucket.retry_after()
        logger.warning("Rate limit exceeded for client %s", key)
        raise TooManyRequests(
            f"rate limit exceeded, retry in {retry_after:.1f}s", source="rate_limit"
        )

    def _prune(self, now: float) -> None:
        idle = [k for k, b in self._buckets.items() if now - b.last_seen >= self.window_seconds]
        for k in idle:
            del self._buckets[k]

    def reset(self, key: str | None = None) -> None:
        """Forget *key* (or every client when omitted)."""
        if key is None:
            self._buckets.clear()
        else:
            self._buckets.pop(key, None)


def client_key(conn: HTTPConnection) -> str:
    forwarded = conn.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if conn.client is not None:
        return conn.client.host
    return "unknown"


async def enforce_rate_limit(conn: HTTPConnection) -> None:
    """Router dependency: charge the caller against ``app.state.rate_limiter``."""
    limiter: RateLimiter = conn.app.state.rate_limiter
    try:
        await limiter.acquire(client_key(conn))
    except TooManyRequests:
        conn.app.state.metrics.record_rate_limited()
        raise
