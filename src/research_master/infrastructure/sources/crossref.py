"""
CrossRef API Integration

Provides access to CrossRef's metadata API for work search and DOI lookup.
CrossRef is the official DOI registration agency for scholarly publications.

API Documentation: https://api.crossref.org/swagger-ui/index.html

Capabilities: SEARCH | DOI_LOOKUP

Rate Limits:
- Polite pool (with email): ~50 req/sec
- Anonymous: ~1 req/sec (strongly discouraged)
"""

from __future__ import annotations

import logging
import re
import urllib.parse
from typing import Any

import httpx

from research_master.domain.entities import (
    Paper,
    PaperBuilder,
    SearchQuery,
    SearchResponse,
    Source,
    SourceCapabilities,
    SortBy,
    SourceType,
)
from research_master.infrastructure.sources.base_client import BaseAPIClient
from research_master.shared.exceptions import NotFoundError, ParseError

logger = logging.getLogger(__name__)

# CrossRef API endpoint
CROSSREF_API_BASE = "https://api.crossref.org"

# Default contact email (required for polite pool)
DEFAULT_EMAIL = "research-master@example.com"

_SORT_PARAMS = {
    SortBy.RELEVANCE: "relevance",
    SortBy.DATE: "published",
    SortBy.CITATIONS: "is-referenced-by-count",
}

_TAG_RE = re.compile(r"<[^>]+>")


class CrossRefSource(BaseAPIClient, Source):
    """
    CrossRef adapter.

    Usage:
        source = CrossRefSource(email="your@email.com")
        response = await source.search(SearchQuery.builder("CRISPR").build())
        paper = await source.get_by_doi("10.1038/nature12373")
    """

    _service_name = "crossref"

    source_id = SourceType.CROSSREF.value
    name = "CrossRef"
    capabilities = SourceCapabilities.SEARCH | SourceCapabilities.DOI_LOOKUP

    def __init__(
        self,
        email: str | None = None,
        timeout: float = 30.0,
        **kwargs: Any,
    ):
        """
        Initialize CrossRef client.

        Args:
            email: Contact email for polite pool access (strongly recommended)
            timeout: Request timeout in seconds
            **kwargs: Passed to BaseAPIClient (proxy, transport, retries)
        """
        self._email = email or DEFAULT_EMAIL
        super().__init__(
            base_url=CROSSREF_API_BASE,
            timeout=timeout,
            headers={
                "User-Agent": f"research-master/0.1 (mailto:{self._email})",
                "Accept": "application/json",
            },
            **kwargs,
        )

    def _prepare_params(self, params: dict[str, Any]) -> dict[str, Any]:
        """Add mailto parameter for polite pool access."""
        return {**params, "mailto": self._email}

    def _parse_response(self, response: httpx.Response, expect_json: bool) -> Any:
        """Extract 'message' key from CrossRef JSON responses."""
        data = super()._parse_response(response, expect_json)
        if isinstance(data, dict):
            return data.get("message", data)
        return data

    # =========================================================================
    # Source operations
    # =========================================================================

    async def search(self, query: SearchQuery) -> SearchResponse:
        params: dict[str, Any] = {
            "rows": min(query.max_results, 1000),
            "sort": _SORT_PARAMS[query.sort_by],
            "order": "desc",
        }
        if query.query:
            params["query"] = query.query
        if query.author:
            params["query.author"] = query.author

        filters: list[str] = []
        if (years := query.year_range()) is not None:
            if years.start is not None:
                filters.append(f"from-pub-date:{years.start}")
            if years.end is not None:
                filters.append(f"until-pub-date:{years.end}")
        if filters:
            params["filter"] = ",".join(filters)

        data = await self._make_request("/works", params=params)
        if not isinstance(data, dict):
            raise ParseError("Unexpected search response", source_id=self.source_id)

        items = data.get("items", [])
        papers = [p for p in (self._to_paper(item) for item in items) if p is not None]
        total = data.get("total-results")
        return SearchResponse(
            papers=tuple(papers),
            source=self.source_id,
            query=query.query,
            total_results=total,
            has_more=total is not None and total > len(papers),
        )

    async def get_by_doi(self, doi: str) -> Paper:
        doi = self._normalize_doi(doi)
        try:
            work = await self._make_request(f"/works/{urllib.parse.quote(doi, safe='')}")
        except NotFoundError:
            raise NotFoundError("DOI", doi, source_id=self.source_id) from None
        paper = self._to_paper(work) if isinstance(work, dict) else None
        if paper is None:
            raise ParseError(f"Unusable work record for {doi}", source_id=self.source_id)
        return paper

    def validate_id(self, paper_id: str) -> bool:
        return self._normalize_doi(paper_id).startswith("10.")

    # =========================================================================
    # Parsing
    # =========================================================================

    def _to_paper(self, work: dict[str, Any]) -> Paper | None:
        doi = work.get("DOI")
        if not doi:
            return None
        titles = work.get("title") or []
        authors = [
            " ".join(part for part in (a.get("given"), a.get("family")) if part) or a.get("name", "")
            for a in work.get("author", [])
        ]
        year, month, day = self.extract_publication_date(work)
        published = None
        if year:
            parts = [str(year)]
            if month:
                parts.append(f"{month:02d}")
                if day:
                    parts.append(f"{day:02d}")
            published = "-".join(parts)

        pdf_url = next(
            (
                link.get("URL")
                for link in work.get("link", [])
                if link.get("content-type") == "application/pdf"
            ),
            None,
        )
        builder = (
            PaperBuilder(doi, titles[0] if titles else "", work.get("URL") or f"https://doi.org/{doi}", self.source_id)
            .doi(doi)
            .authors(authors)
            .abstract(_TAG_RE.sub("", work.get("abstract", "")).strip())
            .published_date(published)
            .pdf_url(pdf_url)
            .categories(work.get("subject", []))
            .citations(work.get("is-referenced-by-count"))
        )
        if container := work.get("container-title"):
            builder.extra("journal", container[0])
        if work_type := work.get("type"):
            builder.extra("type", work_type)
        return builder.build()

    @staticmethod
    def _normalize_doi(doi: str) -> str:
        """Normalize DOI string."""
        doi = doi.strip()
        for prefix in ["https://doi.org/", "http://doi.org/", "https://dx.doi.org/", "doi:"]:
            if doi.lower().startswith(prefix.lower()):
                doi = doi[len(prefix):]
        return doi

    @staticmethod
    def extract_publication_date(
        work: dict[str, Any],
    ) -> tuple[int | None, int | None, int | None]:
        """
        Extract publication date from CrossRef work.

        Priority: published-print > published-online > published > created

        Returns:
            Tuple of (year, month, day) - components may be None
        """
        for field in ("published-print", "published-online", "published", "created"):
            if field in work:
                date_parts = work[field].get("date-parts", [[]])
                if date_parts and date_parts[0] and date_parts[0][0]:
                    parts = date_parts[0]
                    year = parts[0]
                    month = parts[1] if len(parts) >= 2 else None
                    day = parts[2] if len(parts) >= 3 else None
                    return (year, month, day)
        return (None, None, None)
