"""
Infrastructure Layer - External Systems Integration

Contains:
- cache: Two-tier (memory LRU + optional disk) result cache
- sources: Provider adapters (arXiv, CrossRef, Semantic Scholar)
"""

from .cache import ResultCache
from .sources import build_sources

__all__ = [
    "ResultCache",
    "build_sources",
]
