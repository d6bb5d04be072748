"""
Pytest configuration and shared fixtures.
"""

from __future__ import annotations

import asyncio
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from research_master.application.search.dispatcher import SearchDispatcher
from research_master.application.search.rate_limiter import RateLimiter
from research_master.application.sources import SourceRegistry
from research_master.domain.entities import (
    CitationRequest,
    DownloadRequest,
    DownloadResult,
    Paper,
    PaperBuilder,
    SearchQuery,
    SearchResponse,
    Source,
    SourceCapabilities,
)
from research_master.infrastructure.cache import ResultCache

# ============================================================
# Environment Fixtures
# ============================================================


@pytest.fixture
def temp_dir():
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(autouse=True)
def _test_mode(monkeypatch):
    """Keep the developer's RESEARCH_MASTER_* environment out of the tests."""
    monkeypatch.setenv("RESEARCH_MASTER_TEST_MODE", "true")


class FakeClock:
    """Manually advanced wall clock for cache TTL tests."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ============================================================
# Paper Fixtures
# ============================================================


def make_paper(
    paper_id: str,
    source: str = "mock",
    *,
    title: str | None = None,
    doi: str | None = None,
    published: str | None = None,
    citations: int | None = None,
    authors: list[str] | None = None,
) -> Paper:
    return (
        PaperBuilder(paper_id, title or f"Paper {paper_id}", f"https://example.org/{paper_id}", source)
        .doi(doi)
        .published_date(published)
        .citations(citations)
        .authors(authors or [])
        .build()
    )


@pytest.fixture
def sample_paper() -> Paper:
    return make_paper(
        "2301.00001",
        "arxiv",
        title="Attention Is All You Need",
        doi="10.48550/arXiv.1706.03762",
        published="2017-06-12",
        citations=100,
        authors=["Ashish Vaswani", "Noam Shazeer"],
    )


# ============================================================
# Mock Source
# ============================================================


class MockSource(Source):
    """
    Configurable in-memory provider.

    Args:
        source_id: Provider id
        capabilities: Declared capability set
        papers: Papers returned by search-like operations
        error: Exception raised by every call (instead of returning)
        delay: Seconds to sleep before answering
        on_call: Hook called with the operation name at the start of each call
    """

    def __init__(
        self,
        source_id: str = "mock",
        capabilities: SourceCapabilities = SourceCapabilities.SEARCH,
        *,
        papers: list[Paper] | None = None,
        error: BaseException | None = None,
        delay: float = 0.0,
        on_call: Callable[[str], None] | None = None,
    ) -> None:
        self._source_id = source_id
        self._capabilities = capabilities
        self.papers = list(papers) if papers is not None else [make_paper(f"{source_id}-1", source_id)]
        self.error = error
        self.delay = delay
        self.on_call = on_call
        self.calls: list[tuple[str, Any]] = []
        self.cancelled = False
        self.closed = False

    @property
    def source_id(self) -> str:
        return self._source_id

    @property
    def name(self) -> str:
        return f"Mock {self._source_id}"

    @property
    def capabilities(self) -> SourceCapabilities:
        return self._capabilities

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def _answer(self, operation: str, argument: Any) -> None:
        self.calls.append((operation, argument))
        if self.on_call is not None:
            self.on_call(operation)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error is not None:
            raise self.error

    def _response(self, query: str = "") -> SearchResponse:
        return SearchResponse(papers=tuple(self.papers), source=self._source_id, query=query)

    async def search(self, query: SearchQuery) -> SearchResponse:
        await self._answer("search", query)
        return self._response(query.query)

    async def search_by_author(self, author: str, max_results: int = 10) -> SearchResponse:
        await self._answer("search_by_author", author)
        return self._response(author)

    async def get_by_doi(self, doi: str) -> Paper:
        await self._answer("get_by_doi", doi)
        return self.papers[0]

    async def get_citations(self, request: CitationRequest) -> SearchResponse:
        await self._answer("get_citations", request)
        return self._response(request.paper_id)

    async def get_references(self, request: CitationRequest) -> SearchResponse:
        await self._answer("get_references", request)
        return self._response(request.paper_id)

    async def get_related(self, request: CitationRequest) -> SearchResponse:
        await self._answer("get_related", request)
        return self._response(request.paper_id)

    async def download(self, request: DownloadRequest) -> DownloadResult:
        await self._answer("download", request)
        return DownloadResult.ok(f"{request.save_path}/{request.paper_id}.pdf", 1234)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def mock_source_factory():
    """Build MockSource instances: ``mock_source_factory("a", papers=[...])``."""
    return MockSource


# ============================================================
# Dispatcher Fixtures
# ============================================================


def build_dispatcher(
    sources: list[Source],
    *,
    cache: ResultCache | None = None,
    rate_limiter: RateLimiter | None = None,
    **kwargs: Any,
) -> SearchDispatcher:
    registry = SourceRegistry.from_sources(sources)
    return SearchDispatcher(
        registry,
        rate_limiter or RateLimiter(default_rate=0, max_concurrent=10, timeout=5.0),
        cache,
        **kwargs,
    )
