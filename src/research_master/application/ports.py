"""
Application ports - interfaces the application layer needs from infrastructure.

The dispatcher only knows these protocols; concrete implementations are
wired in by the DI container.
"""

from __future__ import annotations

from typing import Any, Literal, Protocol, runtime_checkable

CacheKind = Literal["searches", "citations"]


@runtime_checkable
class ResultCachePort(Protocol):
    """TTL- and size-bounded result cache keyed by query fingerprint."""

    def get(self, fingerprint: str) -> Any | None:
        """Cached value, or ``None`` on miss / expiry.

        Raises:
            CacheIOError: persistent tier failure (callers treat as a miss)
        """
        ...

    def put(self, fingerprint: str, value: Any, ttl: float, *, kind: CacheKind = "searches") -> None:
        """Store ``value`` for ``ttl`` seconds, evicting LRU entries to fit.

        Raises:
            CacheIOError: persistent tier failure (callers ignore it)
        """
        ...
