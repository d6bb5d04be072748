"""
Semantic Scholar Integration

Provides cross-domain academic search via Semantic Scholar API.

API Documentation: https://api.semanticscholar.org/api-docs/

Features:
- Cross-domain search (not limited to biomedicine)
- Citation graph (citing and referenced papers)
- Author disambiguation
- Paper recommendations

Capabilities: SEARCH | CITATIONS | DOI_LOOKUP | AUTHOR_SEARCH
"""

from __future__ import annotations

import logging
import urllib.parse
from collections.abc import Callable
from typing import Any

from research_master.domain.entities import (
    CitationRequest,
    Paper,
    PaperBuilder,
    SearchQuery,
    SearchResponse,
    Source,
    SourceCapabilities,
    SourceType,
)
from research_master.infrastructure.sources.base_client import BaseAPIClient
from research_master.shared.exceptions import NotFoundError, ParseError

logger = logging.getLogger(__name__)

# Semantic Scholar API endpoints
S2_API_BASE = "https://api.semanticscholar.org/graph/v1"
S2_RECOMMENDATIONS_URL = "https://api.semanticscholar.org/recommendations/v1/papers/forpaper"
S2_WEB_URL = "https://www.semanticscholar.org/paper"

# Maximum page size accepted by the graph API
S2_MAX_LIMIT = 100

# Default fields to request (optimized for token efficiency)
DEFAULT_FIELDS = [
    "paperId",
    "title",
    "abstract",
    "year",
    "publicationDate",
    "authors",
    "venue",
    "citationCount",
    "referenceCount",
    "fieldsOfStudy",
    "openAccessPdf",
    "externalIds",  # Contains DOI, PubMed ID, etc.
    "url",
]


class SemanticScholarSource(BaseAPIClient, Source):
    """
    Semantic Scholar adapter.

    Usage:
        source = SemanticScholarSource(api_key="...")
        response = await source.search(SearchQuery.builder("deep learning").build())
        citing = await source.get_citations(CitationRequest("649def34..."))
    """

    _service_name = "semantic"

    source_id = SourceType.SEMANTIC_SCHOLAR.value
    name = "Semantic Scholar"
    capabilities = (
        SourceCapabilities.SEARCH
        | SourceCapabilities.CITATIONS
        | SourceCapabilities.DOI_LOOKUP
        | SourceCapabilities.AUTHOR_SEARCH
    )

    def __init__(
        self,
        api_key: str | None = None,
        timeout: float = 30.0,
        **kwargs: Any,
    ):
        """
        Initialize client.

        Args:
            api_key: Optional S2 API key (raises the shared anonymous rate limit)
            timeout: Request timeout in seconds
            **kwargs: Passed to BaseAPIClient (proxy, transport, retries)
        """
        headers = {"Accept": "application/json"}
        if api_key:
            headers["x-api-key"] = api_key
        self._has_api_key = bool(api_key)
        super().__init__(base_url=S2_API_BASE, timeout=timeout, headers=headers, **kwargs)

    # =========================================================================
    # Source operations
    # =========================================================================

    async def search(self, query: SearchQuery) -> SearchResponse:
        terms = " ".join(part for part in (query.query, query.author) if part)
        params: dict[str, Any] = {
            "query": terms,
            "limit": min(query.max_results, S2_MAX_LIMIT),
            "fields": ",".join(DEFAULT_FIELDS),
        }
        if (years := query.year_range()) is not None:
            params["year"] = years.to_param()
        if query.category:
            params["fieldsOfStudy"] = query.category

        data = await self._make_request("/paper/search", params=params)
        papers = self._papers_from(self._data_list(data), lambda item: item)
        total = data.get("total") if isinstance(data, dict) else None
        return SearchResponse(
            papers=tuple(papers),
            source=self.source_id,
            query=query.query,
            total_results=total,
            has_more=total is not None and total > len(papers),
        )

    async def search_by_author(self, author: str, max_results: int = 10) -> SearchResponse:
        """Resolve the best-matching author, then list their papers."""
        found = await self._make_request(
            "/author/search", params={"query": author, "limit": 1}
        )
        candidates = self._data_list(found)
        author_id = candidates[0].get("authorId") if candidates else None
        if not author_id:
            raise NotFoundError("Author", author, source_id=self.source_id)

        data = await self._make_request(
            f"/author/{urllib.parse.quote(str(author_id), safe='')}/papers",
            params={
                "limit": min(max_results, S2_MAX_LIMIT),
                "fields": ",".join(DEFAULT_FIELDS),
            },
        )
        papers = self._papers_from(self._data_list(data), lambda item: item)
        return SearchResponse(papers=tuple(papers), source=self.source_id, query=author)

    async def get_by_doi(self, doi: str) -> Paper:
        return await self._get_paper(f"DOI:{doi.strip()}", resource="DOI", identifier=doi)

    async def get_by_id(self, paper_id: str) -> Paper:
        return await self._get_paper(paper_id, resource="Paper", identifier=paper_id)

    async def get_citations(self, request: CitationRequest) -> SearchResponse:
        return await self._citation_graph(request, "citations", "citingPaper")

    async def get_references(self, request: CitationRequest) -> SearchResponse:
        return await self._citation_graph(request, "references", "citedPaper")

    async def get_related(self, request: CitationRequest) -> SearchResponse:
        """Recommendations seeded by one paper."""
        data = await self._make_request(
            f"{S2_RECOMMENDATIONS_URL}/{urllib.parse.quote(request.paper_id, safe='')}",
            params={
                "limit": min(request.max_results, 500),
                "fields": ",".join(DEFAULT_FIELDS),
            },
        )
        items = data.get("recommendedPapers", []) if isinstance(data, dict) else []
        papers = self._papers_from(items, lambda item: item)
        return SearchResponse(papers=tuple(papers), source=self.source_id, query=request.paper_id)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _get_paper(self, lookup_id: str, *, resource: str, identifier: str) -> Paper:
        try:
            data = await self._make_request(
                f"/paper/{urllib.parse.quote(lookup_id, safe=':')}",
                params={"fields": ",".join(DEFAULT_FIELDS)},
            )
        except NotFoundError:
            raise NotFoundError(resource, identifier, source_id=self.source_id) from None
        paper = self._to_paper(data) if isinstance(data, dict) else None
        if paper is None:
            raise ParseError(f"Unusable paper record for {identifier}", source_id=self.source_id)
        return paper

    async def _citation_graph(
        self, request: CitationRequest, endpoint: str, key: str
    ) -> SearchResponse:
        data = await self._make_request(
            f"/paper/{urllib.parse.quote(request.paper_id, safe=':')}/{endpoint}",
            params={
                "limit": min(request.max_results, S2_MAX_LIMIT),
                "fields": ",".join(DEFAULT_FIELDS),
            },
        )
        papers = self._papers_from(self._data_list(data), lambda item: item.get(key) or {})
        return SearchResponse(papers=tuple(papers), source=self.source_id, query=request.paper_id)

    @staticmethod
    def _data_list(data: Any) -> list[dict[str, Any]]:
        if not isinstance(data, dict):
            return []
        items = data.get("data") or []
        return [item for item in items if isinstance(item, dict)]

    def _papers_from(
        self,
        items: list[dict[str, Any]],
        extract: Callable[[dict[str, Any]], dict[str, Any]],
    ) -> list[Paper]:
        papers = []
        for item in items:
            paper = self._to_paper(extract(item))
            if paper is not None:
                papers.append(paper)
        return papers

    def _to_paper(self, paper: dict[str, Any]) -> Paper | None:
        """Normalize an S2 paper record; records without an id are skipped."""
        s2_id = paper.get("paperId")
        if not s2_id:
            return None
        external_ids = paper.get("externalIds") or {}
        year = paper.get("year")
        published = paper.get("publicationDate") or (str(year) if year else None)

        builder = (
            PaperBuilder(
                s2_id,
                paper.get("title") or "",
                paper.get("url") or f"{S2_WEB_URL}/{s2_id}",
                self.source_id,
            )
            .authors([a.get("name", "") for a in paper.get("authors") or [] if a.get("name")])
            .abstract(paper.get("abstract") or "")
            .doi(external_ids.get("DOI"))
            .published_date(published)
            .pdf_url((paper.get("openAccessPdf") or {}).get("url"))
            .categories(paper.get("fieldsOfStudy") or [])
            .citations(paper.get("citationCount"))
        )
        if venue := paper.get("venue"):
            builder.extra("venue", venue)
        if pmid := external_ids.get("PubMed"):
            builder.extra("pmid", pmid)
        if arxiv_id := external_ids.get("ArXiv"):
            builder.extra("arxiv_id", arxiv_id)
        if (count := paper.get("referenceCount")) is not None:
            builder.extra("reference_count", count)
        return builder.build()
