"""
arXiv Integration

Search via the arXiv export API (Atom feed) and PDF download.

API Documentation: https://info.arxiv.org/help/api/user-manual.html

Capabilities: SEARCH | DOWNLOAD

arXiv asks clients to stay at or below one request every three seconds;
configure ``arxiv:0.33`` in the per-source rate limits to honour that.
"""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import Any

import defusedxml.ElementTree as ET  # Security: prevent XML attacks

from research_master.domain.entities import (
    DownloadRequest,
    DownloadResult,
    Paper,
    PaperBuilder,
    SearchQuery,
    SearchResponse,
    SortBy,
    Source,
    SourceCapabilities,
    SourceType,
)
from research_master.infrastructure.sources.base_client import BaseAPIClient
from research_master.shared.exceptions import (
    InvalidParameterError,
    NotFoundError,
    ParseError,
)

logger = logging.getLogger(__name__)

# API endpoints
ARXIV_API_URL = "https://export.arxiv.org/api/query"
ARXIV_ABS_URL = "https://arxiv.org/abs"
ARXIV_PDF_URL = "https://arxiv.org/pdf"

ARXIV_MAX_RESULTS = 2000

NAMESPACES = {
    "atom": "http://www.w3.org/2005/Atom",
    "arxiv": "http://arxiv.org/schemas/atom",
    "opensearch": "http://a9.com/-/spec/opensearch/1.1/",
}

# 2301.12345, 2301.12345v2, hep-th/9901001
_ID_RE = re.compile(r"^(\d{4}\.\d{4,5}|[a-z\-]+(?:\.[a-z]{2})?/\d{7})(?:v\d+)?$")

# arXiv has no citation ordering; those queries fall back to relevance
_SORT_PARAMS = {
    SortBy.RELEVANCE: "relevance",
    SortBy.DATE: "submittedDate",
    SortBy.CITATIONS: "relevance",
}


def parse_arxiv_id(value: str) -> str:
    """
    Normalize an arXiv identifier.

    Accepts bare ids, ``arxiv:`` prefixes and abs/pdf URLs; strips the
    version suffix.

    Raises:
        InvalidParameterError: if no arXiv id can be recognised
    """
    text = (value or "").strip().lower()
    for marker in ("/abs/", "/pdf/"):
        if marker in text:
            text = text.split(marker, 1)[1]
            break
    text = text.removeprefix("arxiv:").removesuffix(".pdf")
    match = _ID_RE.match(text)
    if not match:
        raise InvalidParameterError("paper_id", value, "an arXiv identifier such as 2301.12345")
    return match.group(1)


class ArxivSource(BaseAPIClient, Source):
    """
    arXiv adapter.

    Usage:
        source = ArxivSource()
        response = await source.search(SearchQuery.builder("diffusion models").build())
        result = await source.download(DownloadRequest("2301.12345", "./papers"))
    """

    _service_name = "arxiv"

    source_id = SourceType.ARXIV.value
    name = "arXiv"
    capabilities = SourceCapabilities.SEARCH | SourceCapabilities.DOWNLOAD

    def __init__(self, timeout: float = 30.0, **kwargs: Any):
        super().__init__(base_url=ARXIV_API_URL, timeout=timeout, **kwargs)

    # =========================================================================
    # Source operations
    # =========================================================================

    async def search(self, query: SearchQuery) -> SearchResponse:
        search_query = self.build_search_query(query)
        params = {
            "search_query": search_query,
            "start": 0,
            "max_results": min(query.max_results, ARXIV_MAX_RESULTS),
            "sortBy": _SORT_PARAMS[query.sort_by],
            "sortOrder": "descending",
        }
        logger.info(f"arXiv search: {search_query}")

        xml_text = await self._make_request("", params=params, expect_json=False)
        papers, total = self._parse_atom_response(xml_text)
        return SearchResponse(
            papers=tuple(papers),
            source=self.source_id,
            query=query.query,
            total_results=total,
            has_more=total is not None and total > len(papers),
        )

    async def get_by_id(self, paper_id: str) -> Paper:
        arxiv_id = parse_arxiv_id(paper_id)
        xml_text = await self._make_request("", params={"id_list": arxiv_id}, expect_json=False)
        papers, _ = self._parse_atom_response(xml_text)
        if not papers:
            raise NotFoundError("arXiv paper", arxiv_id, source_id=self.source_id)
        return papers[0]

    async def download(self, request: DownloadRequest) -> DownloadResult:
        arxiv_id = parse_arxiv_id(request.paper_id)
        content = await self._get_bytes(f"{ARXIV_PDF_URL}/{arxiv_id}.pdf")
        if not content.startswith(b"%PDF"):
            raise ParseError(f"Response for {arxiv_id} is not a PDF", source_id=self.source_id)

        target = Path(request.save_path) / f"{arxiv_id.replace('/', '_')}.pdf"
        try:
            await asyncio.to_thread(self._write_file, target, content)
        except OSError as e:
            logger.error(f"arXiv download: cannot write {target}: {e}")
            return DownloadResult.failed(f"Cannot write {target}: {e}")
        logger.info(f"arXiv download: {arxiv_id} -> {target} ({len(content)} bytes)")
        return DownloadResult.ok(str(target), len(content))

    def validate_id(self, paper_id: str) -> bool:
        try:
            parse_arxiv_id(paper_id)
        except InvalidParameterError:
            return False
        return True

    # =========================================================================
    # Query building / parsing
    # =========================================================================

    @staticmethod
    def build_search_query(query: SearchQuery) -> str:
        """Translate a SearchQuery into arXiv's field-prefixed query syntax."""
        parts: list[str] = []
        if query.query:
            # Escape special characters
            escaped = query.query.replace(":", " ").replace("(", " ").replace(")", " ")
            parts.append(f"all:{escaped.strip()}")
        if query.author:
            parts.append(f'au:"{query.author}"')
        if query.category:
            parts.append(f"cat:{query.category}")
        if (years := query.year_range()) is not None:
            start = f"{years.start}01010000" if years.start else "000001010000"
            end = f"{years.end}12312359" if years.end else "999912312359"
            parts.append(f"submittedDate:[{start} TO {end}]")
        return " AND ".join(parts) if parts else "all:*"

    @staticmethod
    def _write_file(target: Path, content: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_suffix(".part")
        tmp.write_bytes(content)
        tmp.replace(target)

    def _parse_atom_response(self, xml_text: str) -> tuple[list[Paper], int | None]:
        """Parse Atom XML response from arXiv."""
        try:
            root = ET.fromstring(xml_text)
        except ET.ParseError as e:
            raise ParseError(f"Invalid Atom feed: {e}", source_id=self.source_id) from e

        total_elem = root.find("opensearch:totalResults", NAMESPACES)
        total = int(total_elem.text) if total_elem is not None and (total_elem.text or "").isdigit() else None

        papers = []
        for entry in root.findall("atom:entry", NAMESPACES):
            paper = self._parse_entry(entry)
            if paper is not None:
                papers.append(paper)
        return papers, total

    def _parse_entry(self, entry: Any) -> Paper | None:
        def text(path: str) -> str:
            elem = entry.find(path, NAMESPACES)
            return " ".join(elem.text.split()) if elem is not None and elem.text else ""

        # Extract ID from URL like http://arxiv.org/abs/1234.5678v1
        match = re.search(r"arxiv.org/abs/(.+)", text("atom:id"))
        if not match:
            # Error entries carry no abs URL
            return None
        try:
            arxiv_id = parse_arxiv_id(match.group(1))
        except InvalidParameterError:
            logger.warning(f"Skipping arXiv entry with unrecognised id: {match.group(1)}")
            return None

        authors = [
            name.text.strip()
            for name in entry.findall("atom:author/atom:name", NAMESPACES)
            if name.text
        ]
        categories = [c.get("term") for c in entry.findall("atom:category", NAMESPACES) if c.get("term")]
        pdf_url = next(
            (link.get("href") for link in entry.findall("atom:link", NAMESPACES) if link.get("title") == "pdf"),
            f"{ARXIV_PDF_URL}/{arxiv_id}.pdf",
        )

        builder = (
            PaperBuilder(arxiv_id, text("atom:title"), f"{ARXIV_ABS_URL}/{arxiv_id}", self.source_id)
            .authors(authors)
            .abstract(text("atom:summary"))
            .doi(text("arxiv:doi") or None)
            .published_date(text("atom:published")[:10] or None)
            .updated_date(text("atom:updated")[:10] or None)
            .pdf_url(pdf_url)
            .categories(categories)
        )
        if comment := text("arxiv:comment"):
            builder.extra("comment", comment)
        if journal_ref := text("arxiv:journal_ref"):
            builder.extra("journal_ref", journal_ref)
        return builder.build()
