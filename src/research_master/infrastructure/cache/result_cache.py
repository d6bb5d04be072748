"""
Result Cache

TTL- and size-bounded cache for provider results, keyed by query
fingerprint. Uses cachetools.LRUCache (sized in bytes) for the memory
tier and, when a directory is configured, JSON files for a persistent
tier that survives restarts.

Features:
- Per-entry TTL (search and citation results use different TTLs)
- Size bound in bytes; LRU eviction inside the same critical section as
  the insertion, so the bound holds at every observable point
- Expired entries are never served: purged lazily on ``get`` and eagerly
  before each ``put``
- Optional disk tier (``<dir>/searches``, ``<dir>/citations``) with the
  same size bound and LRU eviction, tracked by an in-memory size index
  (seeded from file mtimes on first use)
- Thread-safe via one re-entrant lock

Disk failures raise :class:`CacheIOError`; the dispatcher treats those as
a cache miss.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, NamedTuple

from cachetools import LRUCache

from research_master.application.ports import CacheKind
from research_master.domain.entities import (
    DownloadResult,
    Paper,
    ReadResult,
    SearchResponse,
)
from research_master.shared.config import CacheConfig
from research_master.shared.exceptions import CacheIOError

logger = logging.getLogger(__name__)

CACHE_KINDS: tuple[CacheKind, ...] = ("searches", "citations")


# =============================================================================
# Value codec
# =============================================================================

def encode_value(value: Any) -> dict[str, Any]:
    """Wrap a cacheable value in a JSON-compatible, type-tagged envelope."""
    if isinstance(value, SearchResponse):
        return {"type": "search_response", "data": value.to_dict()}
    if isinstance(value, Paper):
        return {"type": "paper", "data": value.to_dict()}
    if isinstance(value, (DownloadResult, ReadResult)):
        raise TypeError(f"{type(value).__name__} is not cacheable")
    return {"type": "json", "data": value}


def decode_value(envelope: dict[str, Any]) -> Any:
    kind = envelope.get("type")
    data = envelope.get("data")
    if kind == "search_response":
        return SearchResponse.from_dict(data)
    if kind == "paper":
        return Paper.from_dict(data)
    if kind == "json":
        return data
    raise ValueError(f"Unknown cached value type: {kind!r}")


def _dumps(obj: Any) -> bytes:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


# =============================================================================
# Memory tier
# =============================================================================

class _Entry(NamedTuple):
    value: Any
    size: int
    kind: CacheKind


class _SizedLRUCache(LRUCache):
    """LRUCache measured in bytes that reports evictions."""

    def __init__(self, maxsize: int, on_evict: Callable[[str], None]) -> None:
        super().__init__(maxsize=maxsize, getsizeof=lambda entry: entry.size)
        self._on_evict = on_evict

    def popitem(self) -> tuple[str, _Entry]:
        key, entry = super().popitem()
        self._on_evict(key)
        return key, entry


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    disk_hits: int = 0

    @property
    def total_requests(self) -> int:
        """Total cache requests."""
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        """Cache hit rate (0-1)."""
        total = self.total_requests
        return self.hits / total if total > 0 else 0.0

    def reset(self) -> None:
        """Reset statistics."""
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.expirations = 0
        self.disk_hits = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "disk_hits": self.disk_hits,
            "hit_rate": round(self.hit_rate, 3),
        }


class ResultCache:
    """
    Fingerprint-keyed result cache.

    Example:
        cache = ResultCache(max_size_bytes=500 * 1024 * 1024,
                            directory=Path("~/.cache/research-master"))
        cache.put(key, response, ttl=1800)
        cache.get(key)   # -> response, until the TTL elapses

    Args:
        max_size_bytes: Bound on resident size (and on disk usage)
        directory: Persistent tier root; ``None`` keeps the cache in memory
        clock: Wall-clock source (seconds); injectable for tests
    """

    def __init__(
        self,
        max_size_bytes: int = 500 * 1024 * 1024,
        directory: str | Path | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_size_bytes < 1:
            raise ValueError(f"max_size_bytes must be positive, got {max_size_bytes}")
        self._max_size = max_size_bytes
        self._clock = clock
        self._lock = threading.RLock()
        self._stats = CacheStats()
        self._expires: dict[str, float] = {}
        self._memory = _SizedLRUCache(max_size_bytes, self._evicted)
        self._directory = Path(directory).expanduser() if directory else None
        self._disk_index: OrderedDict[Path, int] | None = None
        self._disk_total = 0
        if self._directory is not None:
            try:
                for kind in CACHE_KINDS:
                    (self._directory / kind).mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise CacheIOError(
                    f"Cannot create cache directory {self._directory}: {e}",
                    path=str(self._directory),
                ) from e

    @classmethod
    def from_config(cls, config: CacheConfig) -> ResultCache:
        return cls(max_size_bytes=config.max_size_bytes, directory=config.directory)

    @property
    def stats(self) -> CacheStats:
        return self._stats

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def currsize(self) -> int:
        """Bytes resident in the memory tier."""
        return int(self._memory.currsize)

    @property
    def directory(self) -> Path | None:
        return self._directory

    def __len__(self) -> int:
        return len(self._memory)

    def __contains__(self, fingerprint: object) -> bool:
        """True if resident in memory and not expired (does not touch LRU order)."""
        with self._lock:
            expires = self._expires.get(fingerprint)  # type: ignore[arg-type]
            return expires is not None and self._clock() < expires

    # -------------------------------------------------------------------------
    # Port API
    # -------------------------------------------------------------------------

    def get(self, fingerprint: str) -> Any | None:
        """
        Cached value, or ``None`` on miss or expiry.

        Raises:
            CacheIOError: the disk tier could not be read
        """
        with self._lock:
            now = self._clock()
            expires = self._expires.get(fingerprint)
            if expires is not None:
                if now < expires:
                    self._stats.hits += 1
                    return self._memory[fingerprint].value
                self._drop(fingerprint)
                self._stats.expirations += 1

            if self._directory is not None:
                try:
                    found = self._disk_read(fingerprint, now)
                except CacheIOError:
                    self._stats.misses += 1
                    raise
                if found is not None:
                    value, expires_at, kind, size = found
                    self._memory_insert(fingerprint, _Entry(value, size, kind), expires_at)
                    self._stats.hits += 1
                    self._stats.disk_hits += 1
                    return value

            self._stats.misses += 1
            return None

    def put(
        self,
        fingerprint: str,
        value: Any,
        ttl: float,
        *,
        kind: CacheKind = "searches",
    ) -> None:
        """
        Store ``value`` for ``ttl`` seconds.

        Values larger than the whole size bound are not cached.

        Raises:
            CacheIOError: the value cannot be serialized, or the disk tier
                could not be written
        """
        if ttl <= 0:
            return
        if kind not in CACHE_KINDS:
            raise ValueError(f"Unknown cache kind: {kind!r}")
        now = self._clock()
        expires_at = now + ttl
        try:
            document = {
                "metadata": {"cached_at": now, "expires_at": expires_at, "kind": kind},
                "value": encode_value(value),
            }
            payload = _dumps(document)
        except (TypeError, ValueError) as e:
            raise CacheIOError(f"Cannot serialize {type(value).__name__}: {e}") from e
        size = len(payload)

        with self._lock:
            self.prune_expired()
            stored = self._memory_insert(fingerprint, _Entry(value, size, kind), expires_at)
            if self._directory is not None and stored:
                self._disk_write(fingerprint, kind, payload)
                self._disk_enforce_bound()

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def invalidate(self, fingerprint: str) -> bool:
        """Remove one entry from both tiers. Returns True if anything was removed."""
        with self._lock:
            removed = self._drop(fingerprint)
            if self._directory is not None:
                for kind in CACHE_KINDS:
                    path = self._path(fingerprint, kind)
                    self._disk_forget(path)
                    try:
                        path.unlink()
                        removed = True
                    except FileNotFoundError:
                        pass
                    except OSError as e:
                        raise CacheIOError(f"Cannot remove {path}: {e}", path=str(path)) from e
            return removed

    def clear(self) -> int:
        """
        Clear all cache entries.

        Returns:
            Number of memory entries cleared
        """
        with self._lock:
            count = len(self._memory)
            self._memory.clear()
            self._expires.clear()
            if self._directory is not None:
                for path in self._disk_files():
                    try:
                        path.unlink()
                    except FileNotFoundError:
                        pass
                    except OSError as e:
                        raise CacheIOError(f"Cannot remove {path}: {e}", path=str(path)) from e
                self._disk_index = OrderedDict()
                self._disk_total = 0
            return count

    def prune_expired(self) -> int:
        """
        Remove all expired memory entries.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            expired = [key for key, expires in self._expires.items() if expires <= now]
            for key in expired:
                self._drop(key)
            self._stats.expirations += len(expired)
            return len(expired)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _evicted(self, fingerprint: str) -> None:
        self._expires.pop(fingerprint, None)
        self._stats.evictions += 1
        logger.debug(f"Cache evicted {fingerprint[:12]}")

    def _drop(self, fingerprint: str) -> bool:
        self._expires.pop(fingerprint, None)
        try:
            del self._memory[fingerprint]
            return True
        except KeyError:
            return False

    def _memory_insert(self, fingerprint: str, entry: _Entry, expires_at: float) -> bool:
        try:
            self._memory[fingerprint] = entry
        except ValueError:
            # Larger than the whole bound
            self._drop(fingerprint)
            logger.debug(f"Cache entry too large ({entry.size} bytes), not stored")
            return False
        self._expires[fingerprint] = expires_at
        return True

    def _path(self, fingerprint: str, kind: CacheKind) -> Path:
        assert self._directory is not None
        return self._directory / kind / f"{fingerprint}.json"

    def _disk_files(self) -> list[Path]:
        assert self._directory is not None
        try:
            return [
                path
                for kind in CACHE_KINDS
                for path in (self._directory / kind).glob("*.json")
            ]
        except OSError as e:
            raise CacheIOError(f"Cannot list cache directory: {e}", path=str(self._directory)) from e

    def _disk_read(
        self, fingerprint: str, now: float
    ) -> tuple[Any, float, CacheKind, int] | None:
        for kind in CACHE_KINDS:
            path = self._path(fingerprint, kind)
            try:
                raw = path.read_bytes()
            except FileNotFoundError:
                continue
            except OSError as e:
                raise CacheIOError(f"Cannot read {path}: {e}", path=str(path)) from e

            try:
                document = json.loads(raw)
                expires_at = float(document["metadata"]["expires_at"])
                value = decode_value(document["value"])
            except (ValueError, KeyError, TypeError) as e:
                self._unlink_quietly(path)
                raise CacheIOError(f"Corrupt cache file {path}: {e}", path=str(path)) from e

            if expires_at <= now:
                self._unlink_quietly(path)
                self._stats.expirations += 1
                return None

            try:
                os.utime(path)
            except OSError as e:
                logger.debug(f"Cannot touch {path}: {e}")
            if self._disk_index is not None and path in self._disk_index:
                self._disk_index.move_to_end(path)
            return value, expires_at, kind, len(raw)
        return None

    def _disk_write(self, fingerprint: str, kind: CacheKind, payload: bytes) -> None:
        path = self._path(fingerprint, kind)
        tmp = path.with_suffix(".tmp")
        try:
            tmp.write_bytes(payload)
            os.replace(tmp, path)
        except OSError as e:
            self._unlink_quietly(tmp)
            raise CacheIOError(f"Cannot write {path}: {e}", path=str(path)) from e
        self._disk_track(path, len(payload))

    def _disk_usage(self) -> OrderedDict[Path, int]:
        """File sizes in LRU order; scanned from the directory once, then kept current."""
        if self._disk_index is None:
            entries: list[tuple[float, int, Path]] = []
            for path in self._disk_files():
                try:
                    st = path.stat()
                except FileNotFoundError:
                    continue
                except OSError as e:
                    raise CacheIOError(f"Cannot stat {path}: {e}", path=str(path)) from e
                entries.append((st.st_mtime, st.st_size, path))
            entries.sort(key=lambda item: item[0])
            self._disk_index = OrderedDict((path, size) for _, size, path in entries)
            self._disk_total = sum(self._disk_index.values())
        return self._disk_index

    def _disk_track(self, path: Path, size: int) -> None:
        index = self._disk_usage()
        self._disk_total += size - index.pop(path, 0)
        index[path] = size

    def _disk_forget(self, path: Path) -> None:
        if self._disk_index is not None:
            self._disk_total -= self._disk_index.pop(path, 0)

    def _disk_enforce_bound(self) -> None:
        """Delete least recently used files until disk usage fits the bound."""
        index = self._disk_usage()
        while self._disk_total > self._max_size and index:
            path, size = index.popitem(last=False)
            self._disk_total -= size
            self._unlink_quietly(path)

    def _unlink_quietly(self, path: Path) -> None:
        self._disk_forget(path)
        try:
            path.unlink()
        except OSError as e:
            logger.debug(f"Cannot remove {path}: {e}")
