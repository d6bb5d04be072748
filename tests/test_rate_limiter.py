"""Tests for RateLimiter (per-source token buckets + global ceiling)."""

from __future__ import annotations

import asyncio
import time

import pytest

from research_master.application.search.rate_limiter import RateLimiter
from research_master.shared.config import RateLimitConfig
from research_master.shared.exceptions import RateLimitTimeoutError


class TestBuckets:
    def test_bucket_per_source(self):
        limiter = RateLimiter(default_rate=5, per_source={"semantic": 0.5})
        assert limiter.bucket_for("semantic").rate == 0.5
        assert limiter.bucket_for("arxiv").rate == 5
        assert limiter.bucket_for("arxiv") is limiter.bucket_for("arxiv")

    def test_zero_rate_disables_pacing(self):
        limiter = RateLimiter(default_rate=5, per_source={"local": 0})
        assert limiter.bucket_for("local") is None

    def test_burst_sets_capacity(self):
        limiter = RateLimiter(default_rate=1, burst={"arxiv": 4})
        assert limiter.bucket_for("arxiv").capacity == 4

    def test_from_config(self):
        config = RateLimitConfig(
            default_requests_per_second=2.0,
            max_concurrent_requests=3,
            acquire_timeout_seconds=1.5,
            per_source={"semantic": 0.25},
        )
        limiter = RateLimiter.from_config(config)
        assert limiter.global_limiter.max_concurrent == 3
        assert limiter.rate_for("semantic") == 0.25
        assert limiter.rate_for("other") == 2.0


class TestAdmission:
    async def test_slot_released_after_block(self):
        limiter = RateLimiter(default_rate=0, max_concurrent=2)
        async with limiter.acquire("a"):
            assert limiter.global_limiter.in_use == 1
        assert limiter.global_limiter.in_use == 0

    async def test_slot_released_on_error(self):
        limiter = RateLimiter(default_rate=0, max_concurrent=1)
        with pytest.raises(ValueError):
            async with limiter.acquire("a"):
                raise ValueError("provider blew up")
        assert limiter.global_limiter.in_use == 0

    async def test_global_ceiling_across_sources(self):
        limiter = RateLimiter(default_rate=0, max_concurrent=2)
        active = 0
        peak = 0

        async def call(source_id: str):
            nonlocal active, peak
            async with limiter.acquire(source_id):
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*(call(sid) for sid in ["a", "b", "c", "a", "b", "c"]))
        assert peak == 2

    async def test_per_source_pacing(self):
        limiter = RateLimiter(default_rate=20, max_concurrent=10, burst={"a": 1})
        start = time.monotonic()
        for _ in range(3):
            async with limiter.acquire("a"):
                pass
        assert time.monotonic() - start >= (3 - 1) / 20 - 0.01

    async def test_sources_are_paced_independently(self):
        limiter = RateLimiter(default_rate=1, max_concurrent=10, burst={"a": 1, "b": 1})
        start = time.monotonic()
        async with limiter.acquire("a"):
            pass
        async with limiter.acquire("b"):
            pass
        assert time.monotonic() - start < 0.1


class TestTimeout:
    async def test_timeout_waiting_for_slot(self):
        limiter = RateLimiter(default_rate=0, max_concurrent=1, timeout=0.05)
        async with limiter.acquire("a"):
            with pytest.raises(RateLimitTimeoutError) as exc_info:
                async with limiter.acquire("b"):
                    pass
            assert exc_info.value.source_id == "b"
            assert limiter.global_limiter.in_use == 1
            assert limiter.global_limiter.waiting == 0
        assert limiter.global_limiter.in_use == 0

    async def test_timeout_waiting_for_token(self):
        limiter = RateLimiter(default_rate=0.1, max_concurrent=5, burst={"a": 1}, timeout=0.05)
        async with limiter.acquire("a"):
            pass
        with pytest.raises(RateLimitTimeoutError):
            async with limiter.acquire("a"):
                pass
        assert limiter.global_limiter.in_use == 0

    async def test_token_refunded_on_slot_timeout(self):
        limiter = RateLimiter(default_rate=1, max_concurrent=1, burst={"a": 1, "b": 1}, timeout=0.05)
        async with limiter.acquire("b"):
            with pytest.raises(RateLimitTimeoutError):
                async with limiter.acquire("a"):
                    pass
        assert limiter.bucket_for("a").available >= 0.99

    async def test_per_call_timeout_override(self):
        limiter = RateLimiter(default_rate=0, max_concurrent=1, timeout=None)
        async with limiter.acquire("a"):
            with pytest.raises(RateLimitTimeoutError) as exc_info:
                async with limiter.acquire("b", timeout=0.02):
                    pass
        assert exc_info.value.timeout == 0.02

    async def test_cancelled_waiter_refunds_and_leaves_queue(self):
        limiter = RateLimiter(default_rate=1, max_concurrent=1, burst={"a": 1, "b": 1}, timeout=None)

        async def wait_for_a():
            async with limiter.acquire("a"):
                pass

        async with limiter.acquire("b"):
            task = asyncio.create_task(wait_for_a())
            await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            assert limiter.global_limiter.waiting == 0
        assert limiter.global_limiter.in_use == 0
        assert limiter.bucket_for("a").available >= 0.99
