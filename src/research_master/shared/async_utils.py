"""
Async Admission Primitives.

Python 3.12+ features used:
- asyncio.timeout (3.11+) friendly cancellation semantics
- Modern type annotations

Provides:
- TokenBucket: per-provider request pacing (continuous refill, burst capacity)
- ConcurrencyLimiter: FIFO counting semaphore for a global in-flight ceiling
- CircuitBreaker: fail-fast guard for a provider that keeps failing

The primitives are independent of each other; the application layer
composes them (see ``application.search.rate_limiter``).
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from .exceptions import CircuitOpenError, is_retryable_error

logger = logging.getLogger(__name__)


# =============================================================================
# Token Bucket
# =============================================================================

@dataclass
class TokenBucket:
    """
    Token bucket refilled continuously at ``rate`` tokens per second.

    The bucket starts full. ``acquire`` suspends until one whole token is
    available and then takes it. Waiters are served in arrival order: the
    internal lock is held while sleeping, and ``asyncio.Lock`` wakes
    waiters FIFO.

    Example:
        bucket = TokenBucket(rate=5.0, capacity=5)
        async with bucket:
            await make_api_call()
    """
    rate: float
    capacity: float | None = None
    _tokens: float = field(init=False)
    _last_update: float = field(init=False)
    _lock: asyncio.Lock = field(init=False, default_factory=asyncio.Lock)

    def __post_init__(self) -> None:
        if self.rate <= 0:
            raise ValueError(f"rate must be positive, got {self.rate}")
        if self.capacity is None:
            self.capacity = max(1.0, float(self.rate))
        if self.capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {self.capacity}")
        self._tokens = float(self.capacity)
        self._last_update = time.monotonic()

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_update
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
        self._last_update = now

    @property
    def available(self) -> float:
        """Tokens currently available (never negative)."""
        elapsed = time.monotonic() - self._last_update
        return min(self.capacity, self._tokens + elapsed * self.rate)

    async def acquire(self) -> None:
        """Take one token, waiting for the refill if necessary."""
        async with self._lock:
            self._refill()
            while self._tokens < 1:
                wait_time = (1 - self._tokens) / self.rate
                logger.debug(f"Token bucket: waiting {wait_time:.3f}s")
                await asyncio.sleep(wait_time)
                self._refill()
            self._tokens -= 1

    def try_acquire(self) -> bool:
        """Take a token without waiting. Never jumps ahead of queued waiters."""
        if self._lock.locked():
            return False
        self._refill()
        if self._tokens >= 1:
            self._tokens -= 1
            return True
        return False

    def refund(self) -> None:
        """Return a token that was taken but not used."""
        self._refill()
        self._tokens = min(self.capacity, self._tokens + 1)

    async def __aenter__(self) -> TokenBucket:
        await self.acquire()
        return self

    async def __aexit__(self, *args: Any) -> None:
        pass


# =============================================================================
# Concurrency Limiter (FIFO semaphore)
# =============================================================================

class ConcurrencyLimiter:
    """
    Counting semaphore with strict FIFO admission.

    ``release`` hands the freed slot directly to the oldest waiter, so a
    newcomer can never overtake a task that is already queued. A waiter
    cancelled after its slot was handed over gives the slot back.

    Example:
        limiter = ConcurrencyLimiter(10)
        async with limiter:
            await make_api_call()
    """

    def __init__(self, max_concurrent: int) -> None:
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")
        self._max = max_concurrent
        self._in_use = 0
        self._waiters: deque[asyncio.Future[None]] = deque()

    @property
    def max_concurrent(self) -> int:
        return self._max

    @property
    def in_use(self) -> int:
        return self._in_use

    @property
    def waiting(self) -> int:
        return sum(1 for fut in self._waiters if not fut.done())

    def locked(self) -> bool:
        """True when an acquire would have to wait."""
        return self._in_use >= self._max or self.waiting > 0

    async def acquire(self) -> None:
        if not self.locked():
            self._in_use += 1
            return

        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        try:
            await fut
        except asyncio.CancelledError:
            if fut.done() and not fut.cancelled():
                # Slot was transferred to us before the cancellation landed
                self.release()
            elif fut in self._waiters:
                self._waiters.remove(fut)
            raise

    def release(self) -> None:
        if self._in_use <= 0:
            raise RuntimeError("ConcurrencyLimiter released too many times")
        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                fut.set_result(None)
                return
        self._in_use -= 1

    async def __aenter__(self) -> ConcurrencyLimiter:
        await self.acquire()
        return self

    async def __aexit__(self, *args: Any) -> None:
        self.release()


# =============================================================================
# Circuit Breaker Pattern
# =============================================================================

@dataclass
class CircuitBreaker:
    """
    Circuit breaker for fault tolerance.

    States:
    - CLOSED: Normal operation
    - OPEN: Failing, reject requests immediately
    - HALF_OPEN: Testing if service recovered

    Only retryable failures count; cancellations and permanent errors
    (not found, unsupported) say nothing about provider health.

    Example:
        breaker = CircuitBreaker(source_id="arxiv", failure_threshold=5)

        async with breaker:
            result = await risky_api_call()
    """
    source_id: str | None = None
    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    half_open_max_calls: int = 1

    _failure_count: int = field(init=False, default=0)
    _last_failure_time: float | None = field(init=False, default=None)
    _state: str = field(init=False, default="closed")
    _half_open_calls: int = field(init=False, default=0)
    _lock: asyncio.Lock = field(init=False, default_factory=asyncio.Lock)

    @property
    def state(self) -> str:
        if self._state == "open" and not self.is_open:
            return "half_open"
        return self._state

    @property
    def is_open(self) -> bool:
        """Check if circuit is open (rejecting requests)."""
        if self._state == "open":
            if self._last_failure_time is not None:
                if time.monotonic() - self._last_failure_time > self.recovery_timeout:
                    return False  # Move to half-open
            return True
        return False

    async def __aenter__(self) -> CircuitBreaker:
        async with self._lock:
            if self.is_open:
                raise CircuitOpenError(self.source_id, retry_after=self.recovery_timeout)

            if self._state == "open":
                self._state = "half_open"
                self._half_open_calls = 0

            if self._state == "half_open":
                if self._half_open_calls >= self.half_open_max_calls:
                    raise CircuitOpenError(self.source_id, retry_after=self.recovery_timeout)
                self._half_open_calls += 1

        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        async with self._lock:
            if exc_val is None:
                if self._state == "half_open":
                    self._state = "closed"
                    self._failure_count = 0
                    logger.info(f"Circuit breaker closed for {self.source_id} (recovered)")
                else:
                    self._failure_count = 0
                return

            if not isinstance(exc_val, Exception) or not is_retryable_error(exc_val):
                if self._state == "half_open":
                    self._half_open_calls = max(0, self._half_open_calls - 1)
                return

            self._failure_count += 1
            self._last_failure_time = time.monotonic()
            if self._state == "half_open" or self._failure_count >= self.failure_threshold:
                self._state = "open"
                logger.warning(
                    f"Circuit breaker opened for {self.source_id} "
                    f"after {self._failure_count} failures"
                )
