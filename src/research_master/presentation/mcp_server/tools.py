"""
Research Master MCP Tools

Tools:
- search_papers: Federated search across every SEARCH-capable source
- search_by_author: Papers by an author
- get_paper_by_doi: DOI lookup, merged across sources
- get_citations / get_references / get_related_papers: Citation graph
- download_paper: PDF download through DOWNLOAD-capable sources
- list_sources: Registered sources and their capabilities

Every tool translates its arguments into one dispatcher call and returns
JSON text. Invalid arguments come back as a JSON error object; per-source
failures are listed under ``failures`` next to the successful results.

Usage:
    from .tools import register_search_tools
    register_search_tools(mcp, dispatcher)
"""

from __future__ import annotations

import json
import logging
from typing import Any

from mcp.server.fastmcp import FastMCP

from research_master.application.search.dispatcher import SearchDispatcher
from research_master.domain.entities import CitationRequest, DownloadRequest, SearchQuery
from research_master.shared.exceptions import ResearchMasterError

logger = logging.getLogger(__name__)

DEFAULT_DOWNLOAD_DIR = "./downloads"


def _to_json(data: dict[str, Any]) -> str:
    return json.dumps(data, ensure_ascii=False, indent=2, default=str)


def _error(error: ResearchMasterError | str, tool_name: str, suggestion: str | None = None) -> str:
    """Uniform error payload for invalid tool input."""
    if isinstance(error, ResearchMasterError):
        payload = error.to_dict()
    else:
        payload = {"error": error}
    payload["tool"] = tool_name
    if suggestion and "suggestion" not in payload:
        payload["suggestion"] = suggestion
    return _to_json(payload)


def _source_list(sources: list[str] | str | None) -> list[str] | None:
    """Accept a list or a comma-separated string; empty means all sources."""
    if sources is None:
        return None
    if isinstance(sources, str):
        sources = sources.split(",")
    cleaned = [s.strip() for s in sources if s and s.strip()]
    return cleaned or None


def register_search_tools(mcp: FastMCP, dispatcher: SearchDispatcher) -> int:
    """Register the search tools on ``mcp``. Returns the number registered."""

    @mcp.tool()
    async def search_papers(
        query: str,
        max_results: int = 10,
        year: str | None = None,
        author: str | None = None,
        category: str | None = None,
        sort_by: str = "relevance",
        sources: list[str] | str | None = None,
        deduplicate: bool = False,
    ) -> str:
        """
        Search academic papers across all configured sources concurrently.

        Args:
            query: Search terms (e.g., "graph neural networks").
            max_results: Maximum results requested from each source.
            year: Year filter: "2020", "2018-2022", "2010-" or "-2015".
            author: Optional author filter.
            category: Optional subject/category filter.
            sort_by: "relevance" (default), "date" or "citations".
            sources: Restrict to these source ids (e.g., ["arxiv", "crossref"]).
            deduplicate: Collapse the same paper reported by several sources.

        Returns:
            JSON with merged papers, per-source counts and per-source failures.
        """
        try:
            search_query = (
                SearchQuery.builder(query)
                .max_results(max_results)
                .year(year)
                .author(author)
                .category(category)
                .sort_by(sort_by)
                .build()
            )
        except ResearchMasterError as e:
            return _error(e, "search_papers")

        result = await dispatcher.search(
            search_query, sources=_source_list(sources), deduplicate=deduplicate
        )
        return _to_json(result.to_dict())

    @mcp.tool()
    async def search_by_author(
        author: str,
        max_results: int = 10,
        sources: list[str] | str | None = None,
    ) -> str:
        """
        Find papers written by an author.

        Args:
            author: Author name (e.g., "Yoshua Bengio").
            max_results: Maximum papers per source.
            sources: Restrict to these source ids.
        """
        try:
            result = await dispatcher.search_by_author(
                author, max_results=max_results, sources=_source_list(sources)
            )
        except ResearchMasterError as e:
            return _error(e, "search_by_author")
        return _to_json(result.to_dict())

    @mcp.tool()
    async def get_paper_by_doi(doi: str, sources: list[str] | str | None = None) -> str:
        """
        Look a paper up by DOI on every source that supports DOI lookup.

        Args:
            doi: DOI (accepts "10.1038/...", "doi:10.1038/..." or a doi.org URL).
            sources: Restrict to these source ids.

        Returns:
            JSON with the merged paper (``paper``) and per-source results.
        """
        try:
            result = await dispatcher.get_by_doi(doi, sources=_source_list(sources))
        except ResearchMasterError as e:
            return _error(e, "get_paper_by_doi")
        best = result.best()
        return _to_json({"paper": best.to_dict() if best else None, **result.to_dict()})

    async def _citation_tool(
        operation: str,
        paper_id: str,
        max_results: int,
        sources: list[str] | str | None,
    ) -> str:
        try:
            request = CitationRequest(paper_id=paper_id.strip(), max_results=max_results)
            result = await getattr(dispatcher, operation)(request, sources=_source_list(sources))
        except ResearchMasterError as e:
            return _error(e, operation, suggestion="Use a source paper id or DOI:<doi>")
        return _to_json(result.to_dict())

    @mcp.tool()
    async def get_citations(
        paper_id: str,
        max_results: int = 20,
        sources: list[str] | str | None = None,
    ) -> str:
        """
        Papers that cite the given paper (forward in time).

        Args:
            paper_id: Source paper id, or "DOI:<doi>".
            max_results: Maximum citing papers per source.
            sources: Restrict to these source ids.
        """
        return await _citation_tool("get_citations", paper_id, max_results, sources)

    @mcp.tool()
    async def get_references(
        paper_id: str,
        max_results: int = 20,
        sources: list[str] | str | None = None,
    ) -> str:
        """
        Papers referenced by the given paper (backward in time).

        Args:
            paper_id: Source paper id, or "DOI:<doi>".
            max_results: Maximum referenced papers per source.
            sources: Restrict to these source ids.
        """
        return await _citation_tool("get_references", paper_id, max_results, sources)

    @mcp.tool()
    async def get_related_papers(
        paper_id: str,
        max_results: int = 20,
        sources: list[str] | str | None = None,
    ) -> str:
        """
        Papers similar to the given paper (recommendations).

        Args:
            paper_id: Source paper id, or "DOI:<doi>".
            max_results: Maximum related papers per source.
            sources: Restrict to these source ids.
        """
        return await _citation_tool("get_related", paper_id, max_results, sources)

    @mcp.tool()
    async def download_paper(
        paper_id: str,
        save_path: str = DEFAULT_DOWNLOAD_DIR,
        sources: list[str] | str | None = None,
    ) -> str:
        """
        Download a paper's PDF.

        Args:
            paper_id: Source paper id (e.g., arXiv "2301.12345").
            save_path: Directory to write the PDF into.
            sources: Restrict to these source ids (default: every source that can download).
        """
        if not paper_id or not paper_id.strip():
            return _error("paper_id must not be empty", "download_paper")
        request = DownloadRequest(paper_id=paper_id.strip(), save_path=save_path)
        result = await dispatcher.download(request, sources=_source_list(sources))
        return _to_json(result.to_dict())

    @mcp.tool()
    async def list_sources() -> str:
        """List registered sources with their capabilities."""
        return _to_json(
            {
                "sources": [
                    {
                        "id": entry.source_id,
                        "name": entry.source.name,
                        "capabilities": entry.capabilities.labels(),
                    }
                    for entry in dispatcher.registry.entries()
                ]
            }
        )

    tools = [
        search_papers,
        search_by_author,
        get_paper_by_doi,
        get_citations,
        get_references,
        get_related_papers,
        download_paper,
        list_sources,
    ]
    logger.info(f"Registered {len(tools)} search tools")
    return len(tools)
