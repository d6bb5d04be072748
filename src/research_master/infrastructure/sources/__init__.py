"""
Provider adapters.

Contains:
- base_client: shared httpx + tenacity client
- arxiv: arXiv search and PDF download
- crossref: CrossRef search and DOI lookup
- semantic_scholar: Semantic Scholar search, citations, DOI and author lookup

``build_sources`` instantiates every adapter from a resolved
:class:`Config`; enable/disable filtering is left to the registry.
"""

from __future__ import annotations

import logging
from typing import Any

from research_master.domain.entities import Source
from research_master.shared.config import Config

from .arxiv import ArxivSource, parse_arxiv_id
from .base_client import BaseAPIClient
from .crossref import CrossRefSource
from .semantic_scholar import SemanticScholarSource

logger = logging.getLogger(__name__)


def build_sources(config: Config, **client_kwargs: Any) -> list[Source]:
    """
    Create all built-in adapters, in registration order.

    Args:
        config: Resolved configuration (API keys, proxies, timeouts)
        **client_kwargs: Extra BaseAPIClient arguments (e.g. ``transport`` in tests)

    Returns:
        Adapters ordered arxiv, semantic, crossref
    """
    timeout = config.request_timeout_seconds

    def kwargs_for(source_id: str) -> dict[str, Any]:
        return {"timeout": timeout, "proxy": config.proxy.for_source(source_id), **client_kwargs}

    sources: list[Source] = [
        ArxivSource(**kwargs_for(ArxivSource.source_id)),
        SemanticScholarSource(
            api_key=config.api_keys.semantic_scholar,
            **kwargs_for(SemanticScholarSource.source_id),
        ),
        CrossRefSource(**kwargs_for(CrossRefSource.source_id)),
    ]
    logger.debug(f"Built sources: {[s.source_id for s in sources]}")
    return sources


__all__ = [
    "ArxivSource",
    "BaseAPIClient",
    "CrossRefSource",
    "SemanticScholarSource",
    "build_sources",
    "parse_arxiv_id",
]
