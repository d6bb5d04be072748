"""
Provider interface.

Every external paper service is one :class:`Source`. A source declares a
constant capability set; operations it does not declare keep the default
implementation, which raises :class:`UnsupportedOperationError`. The
dispatcher never calls an operation whose flag is missing, so the default
only fires on direct misuse.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from research_master.shared.exceptions import UnsupportedOperationError

from .capabilities import SourceCapabilities, has
from .paper import Paper
from .search import (
    CitationRequest,
    DownloadRequest,
    DownloadResult,
    ReadRequest,
    ReadResult,
    SearchQuery,
    SearchResponse,
)


class Source(ABC):
    """Abstract base class for paper providers."""

    @property
    @abstractmethod
    def source_id(self) -> str:
        """Stable short id, e.g. ``"arxiv"``."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable provider name."""

    @property
    @abstractmethod
    def capabilities(self) -> SourceCapabilities:
        """Constant capability set."""

    def supports(self, flag: SourceCapabilities) -> bool:
        return has(self.capabilities, flag)

    def _unsupported(self, operation: str) -> UnsupportedOperationError:
        return UnsupportedOperationError(operation, source_id=self.source_id)

    # search

    async def search(self, query: SearchQuery) -> SearchResponse:
        raise self._unsupported("search")

    async def search_by_author(self, author: str, max_results: int = 10) -> SearchResponse:
        raise self._unsupported("search_by_author")

    # per-paper

    async def get_by_doi(self, doi: str) -> Paper:
        raise self._unsupported("get_by_doi")

    async def get_by_id(self, paper_id: str) -> Paper:
        raise self._unsupported("get_by_id")

    async def get_citations(self, request: CitationRequest) -> SearchResponse:
        raise self._unsupported("get_citations")

    async def get_references(self, request: CitationRequest) -> SearchResponse:
        raise self._unsupported("get_references")

    async def get_related(self, request: CitationRequest) -> SearchResponse:
        raise self._unsupported("get_related")

    async def download(self, request: DownloadRequest) -> DownloadResult:
        raise self._unsupported("download")

    async def read(self, request: ReadRequest) -> ReadResult:
        raise self._unsupported("read")

    # utility

    def validate_id(self, paper_id: str) -> bool:
        """Cheap syntactic check of a provider-local id."""
        return bool(paper_id and paper_id.strip())

    async def aclose(self) -> None:
        """Release network resources. Safe to call more than once."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.source_id!r} caps={self.capabilities.labels()}>"
