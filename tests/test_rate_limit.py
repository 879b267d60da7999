"""Tests for the per-client token-bucket rate limiter."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from wasteops.errors import TooManyRequests
from wasteops.utils.rate_limit import RateLimiter, client_key


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_burst_up_to_capacity(self):
        limiter = RateLimiter(3, 30.0, clock=FakeClock())
        for _ in range(3):
            await limiter.acquire("10.0.0.1")
        with pytest.raises(TooManyRequests):
            await limiter.acquire("10.0.0.1")

    @pytest.mark.asyncio
    async def test_bucket_refills_over_window(self):
        clock = FakeClock()
        limiter = RateLimiter(3, 30.0, clock=clock)
        for _ in range(3):
            await limiter.acquire("k")
        # one token every 10 s
        clock.now += 10.0
        await limiter.acquire("k")
        with pytest.raises(TooManyRequests):
            await limiter.acquire("k")

    @pytest.mark.asyncio
    async def test_keys_are_independent(self):
        limiter = RateLimiter(1, 30.0, clock=FakeClock())
        await limiter.acquire("a")
        await limiter.acquire("b")
        with pytest.raises(TooManyRequests):
            await limiter.acquire("a")

    @pytest.mark.asyncio
    async def test_disabled_limiter(self):
        limiter = RateLimiter(0, 30.0)
        assert not limiter.enabled
        for _ in range(100):
            await limiter.acquire("k")

    @pytest.mark.asyncio
    async def test_reset(self):
        limiter = RateLimiter(1, 30.0, clock=FakeClock())
        await limiter.acquire("k")
        limiter.reset("k")
        await limiter.acquire("k")


class TestClientKey:
    def test_forwarded_for_first_hop(self):
        conn = SimpleNamespace(
            headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"},
            client=SimpleNamespace(host="10.0.0.1"),
        )
        assert client_key(conn) == "203.0.113.7"

    def test_peer_address_fallback(self):
        conn = SimpleNamespace(headers={}, client=SimpleNamespace(host="192.0.2.4"))
        assert client_key(conn) == "192.0.2.4"

    def test_unknown_client(self):
        assert client_key(SimpleNamespace(headers={}, client=None)) == "unknown"
