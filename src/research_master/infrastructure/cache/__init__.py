"""
Cache Infrastructure

Provides the result cache used by the dispatcher.
"""

from __future__ import annotations

from research_master.infrastructure.cache.result_cache import (
    CacheStats,
    ResultCache,
    decode_value,
    encode_value,
)

__all__ = [
    "CacheStats",
    "ResultCache",
    "decode_value",
    "encode_value",
]
