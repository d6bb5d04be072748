"""
Domain Entities

Contains:
- Paper / PaperBuilder: normalized paper record
- SearchQuery and request / response values
- SourceCapabilities: provider feature flags
- Source: provider interface
"""

from .capabilities import SourceCapabilities, has, intersection, union
from .paper import Paper, PaperBuilder, SourceType
from .search import (
    CitationRequest,
    DownloadRequest,
    DownloadResult,
    ReadRequest,
    ReadResult,
    SearchQuery,
    SearchQueryBuilder,
    SearchResponse,
    SortBy,
    YearRange,
    normalize_text,
)
from .source import Source

__all__ = [
    # Paper
    "Paper",
    "PaperBuilder",
    "SourceType",
    # Query / responses
    "SearchQuery",
    "SearchQueryBuilder",
    "SortBy",
    "YearRange",
    "SearchResponse",
    "CitationRequest",
    "DownloadRequest",
    "DownloadResult",
    "ReadRequest",
    "ReadResult",
    "normalize_text",
    # Capabilities
    "SourceCapabilities",
    "has",
    "union",
    "intersection",
    # Provider interface
    "Source",
]
