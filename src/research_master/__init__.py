"""
Research Master - Federated Academic Paper Search

Searches many academic paper providers at once, with per-provider rate
limiting, a global concurrency ceiling, a TTL-bounded result cache, and
failure isolation: one failing provider never hides the others' results.

Usage:
    from research_master import ApplicationContainer, SearchQuery

    container = ApplicationContainer()
    dispatcher = container.dispatcher()
    result = await dispatcher.search(SearchQuery.builder("protein folding").build())

    for paper in result.papers:
        print(f"{paper.source}: {paper.title}")

Layers:
    - domain: Paper, SearchQuery, SourceCapabilities, Source
    - application: SourceRegistry, RateLimiter, SearchDispatcher
    - infrastructure: ResultCache, provider adapters
    - presentation: MCP server
"""

from .container import ApplicationContainer
from .domain import Paper, SearchQuery, Source, SourceCapabilities
from .application import SearchDispatcher, SourceRegistry

__version__ = "0.1.0"

__all__ = [
    "ApplicationContainer",
    "Paper",
    "SearchDispatcher",
    "SearchQuery",
    "Source",
    "SourceCapabilities",
    "SourceRegistry",
]
