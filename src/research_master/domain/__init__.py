"""
Domain Layer - Core Business Logic

Contains:
- entities: Paper, query values, capability flags, provider interface
"""

from .entities import (
    Paper,
    PaperBuilder,
    SearchQuery,
    SearchResponse,
    SortBy,
    Source,
    SourceCapabilities,
    SourceType,
)

__all__ = [
    "Paper",
    "PaperBuilder",
    "SearchQuery",
    "SearchResponse",
    "SortBy",
    "Source",
    "SourceCapabilities",
    "SourceType",
]
