"""
Rate Limiter - per-provider pacing plus a global concurrency ceiling.

Composes two independent primitives from ``shared.async_utils``:

- one :class:`TokenBucket` per provider (created lazily from configuration)
- one shared :class:`ConcurrencyLimiter` across all providers

Admission order is token first, global slot second, both FIFO. A task
waiting on its own provider's pacing therefore never holds a global slot
that another provider could use. Both waits share one timeout; if it
expires, a token that was already taken is refunded and
:class:`RateLimitTimeoutError` is raised. The global slot is released on
every exit path of the ``async with`` block.

Usage:
    limiter = RateLimiter(default_rate=5.0, max_concurrent=10,
                          per_source={"semantic": 0.5})
    async with limiter.acquire("semantic"):
        response = await source.search(query)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager

from research_master.shared.async_utils import ConcurrencyLimiter, TokenBucket
from research_master.shared.config import RateLimitConfig
from research_master.shared.exceptions import RateLimitTimeoutError

logger = logging.getLogger(__name__)

_UNSET = object()


class RateLimiter:
    """
    Admission control for provider calls.

    Args:
        default_rate: Requests per second for providers without their own rate
        max_concurrent: Global in-flight ceiling across all providers
        per_source: Per-provider rates; ``<= 0`` disables pacing for that provider
        burst: Per-provider bucket capacity (default ``max(1, rate)``)
        timeout: Default admission wait bound in seconds (``None`` waits forever)
    """

    def __init__(
        self,
        default_rate: float = 5.0,
        max_concurrent: int = 10,
        *,
        per_source: Mapping[str, float] | None = None,
        burst: Mapping[str, float] | None = None,
        timeout: float | None = 30.0,
    ) -> None:
        self._default_rate = default_rate
        self._per_source = dict(per_source or {})
        self._burst = dict(burst or {})
        self._timeout = timeout
        self._buckets: dict[str, TokenBucket | None] = {}
        self._global = ConcurrencyLimiter(max_concurrent)

    @classmethod
    def from_config(cls, config: RateLimitConfig) -> RateLimiter:
        return cls(
            default_rate=config.default_requests_per_second,
            max_concurrent=config.max_concurrent_requests,
            per_source=config.per_source,
            burst=config.burst,
            timeout=config.acquire_timeout_seconds,
        )

    @property
    def global_limiter(self) -> ConcurrencyLimiter:
        return self._global

    def rate_for(self, source_id: str) -> float:
        return self._per_source.get(source_id, self._default_rate)

    def bucket_for(self, source_id: str) -> TokenBucket | None:
        """The provider's bucket, or ``None`` when pacing is disabled for it."""
        if source_id not in self._buckets:
            rate = self.rate_for(source_id)
            if rate <= 0:
                self._buckets[source_id] = None
            else:
                self._buckets[source_id] = TokenBucket(
                    rate=rate,
                    capacity=self._burst.get(source_id),
                )
                logger.debug(f"Token bucket for {source_id}: {rate} req/s")
        return self._buckets[source_id]

    @asynccontextmanager
    async def acquire(
        self,
        source_id: str,
        timeout: float | None | object = _UNSET,
    ) -> AsyncIterator[None]:
        """
        Admit one call for ``source_id``.

        Args:
            source_id: Provider being called
            timeout: Wait bound for this call; defaults to the limiter's

        Raises:
            RateLimitTimeoutError: not admitted within the wait bound
        """
        wait_bound = self._timeout if timeout is _UNSET else timeout
        bucket = self.bucket_for(source_id)
        took_token = False
        got_slot = False
        try:
            async with asyncio.timeout(wait_bound):
                if bucket is not None:
                    await bucket.acquire()
                    took_token = True
                await self._global.acquire()
                got_slot = True
        except TimeoutError:
            if got_slot:
                self._global.release()
            elif took_token and bucket is not None:
                bucket.refund()
            logger.warning(f"Rate limiter timeout for {source_id} after {wait_bound}s")
            raise RateLimitTimeoutError(source_id, wait_bound or 0.0) from None
        except BaseException:
            if took_token and bucket is not None and not got_slot:
                bucket.refund()
            if got_slot:
                self._global.release()
            raise

        try:
            yield
        finally:
            self._global.release()
