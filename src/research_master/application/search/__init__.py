"""
Federated Search

Fan-out of one logical operation across every capable provider.

Key Components:
- RateLimiter: Per-provider pacing plus global concurrency ceiling
- SearchDispatcher: Concurrent, cached, failure-isolated dispatch
- result_aggregator: Merge, stable sort and de-duplication

Architecture:
    SearchQuery
        │
        ▼
    ┌──────────────────┐
    │ SearchDispatcher │  ← Resolves capable sources in the registry
    └────────┬─────────┘
             │
    ┌────────┴────────┐
    ▼        ▼        ▼
  cache → rate limiter → circuit breaker → provider   (one task each)
    │        │        │
    └────────┴────────┘
             │
             ▼
    ┌──────────────────┐
    │ result_aggregator│  ← Merge in registration order, sort, dedup
    └──────────────────┘
"""

from .dispatcher import SearchDispatcher
from .fingerprint import fingerprint
from .rate_limiter import RateLimiter
from .result_aggregator import (
    DeduplicationStats,
    DeduplicationStrategy,
    deduplicate_papers,
    merge_responses,
    sort_papers,
)
from .results import (
    DispatchResult,
    LookupResult,
    ProviderFailure,
    ProviderOutcome,
    ProviderSuccess,
    SearchResult,
)

__all__ = [
    "SearchDispatcher",
    "RateLimiter",
    "fingerprint",
    # Aggregation
    "DeduplicationStats",
    "DeduplicationStrategy",
    "deduplicate_papers",
    "merge_responses",
    "sort_papers",
    # Results
    "DispatchResult",
    "LookupResult",
    "ProviderFailure",
    "ProviderOutcome",
    "ProviderSuccess",
    "SearchResult",
]
