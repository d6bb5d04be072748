"""
Application Layer - Use Cases and Orchestration

Contains:
- sources: Source registry (capability routing)
- search: Rate limiting, dispatch and result aggregation
- ports: Protocols implemented by the infrastructure layer
"""

from .ports import ResultCachePort
from .search import RateLimiter, SearchDispatcher, SearchResult
from .sources import SourceRegistry

__all__ = [
    "RateLimiter",
    "ResultCachePort",
    "SearchDispatcher",
    "SearchResult",
    "SourceRegistry",
]
