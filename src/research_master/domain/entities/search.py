"""
Search Entities - query, request and response values.

A :class:`SearchQuery` is built once by the caller and then shared,
read-only, by every fanned-out provider call. Responses are plain
immutable values so they can be cached and handed to several callers.

Example:
    >>> query = (
    ...     SearchQuery.builder("transformers")
    ...     .max_results(5)
    ...     .year("2020-")
    ...     .sort_by(SortBy.DATE)
    ...     .build()
    ... )
    >>> query.year_range()
    YearRange(start=2020, end=None)
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Self

from research_master.shared.exceptions import InvalidParameterError

from .paper import Paper

_WHITESPACE_RE = re.compile(r"\s+")
_YEAR_RE = re.compile(r"^\s*(\d{4})?\s*(-)?\s*(\d{4})?\s*$")


def normalize_text(value: str | None) -> str:
    """Trim, collapse whitespace and lowercase (used for cache fingerprints)."""
    if not value:
        return ""
    return _WHITESPACE_RE.sub(" ", value).strip().lower()


class SortBy(Enum):
    """Sort keys applied after merging provider results."""

    RELEVANCE = "relevance"
    DATE = "date"
    CITATIONS = "citations"

    @classmethod
    def parse(cls, value: str | SortBy | None) -> SortBy:
        if value is None:
            return cls.RELEVANCE
        if isinstance(value, cls):
            return value
        key = value.strip().lower().replace("-", "_")
        aliases = {
            "citation_count": cls.CITATIONS,
            "citationcount": cls.CITATIONS,
            "cited": cls.CITATIONS,
            "recent": cls.DATE,
            "newest": cls.DATE,
        }
        if key in aliases:
            return aliases[key]
        try:
            return cls(key)
        except ValueError:
            raise InvalidParameterError(
                "sort_by", value, "one of: relevance, date, citations"
            ) from None


@dataclass(frozen=True)
class YearRange:
    """Inclusive publication-year range; either bound may be open."""

    start: int | None = None
    end: int | None = None

    @classmethod
    def parse(cls, value: str) -> YearRange:
        """
        Parse ``"2020"``, ``"2018-2022"``, ``"2010-"`` or ``"-2015"``.

        Raises:
            InvalidParameterError: for anything else
        """
        match = _YEAR_RE.match(value or "")
        if not match or not (match.group(1) or match.group(3)):
            raise InvalidParameterError("year", value, "YYYY, YYYY-YYYY, YYYY- or -YYYY")
        start, dash, end = match.groups()
        if not dash:
            year = int(start or end)
            return cls(year, year)
        result = cls(int(start) if start else None, int(end) if end else None)
        if result.start is not None and result.end is not None and result.start > result.end:
            raise InvalidParameterError("year", value, "start year <= end year")
        return result

    def contains(self, year: int) -> bool:
        if self.start is not None and year < self.start:
            return False
        return self.end is None or year <= self.end

    def to_param(self) -> str:
        """Render as ``"min-max"`` with open bounds left empty."""
        if self.start is not None and self.start == self.end:
            return str(self.start)
        return f"{self.start or ''}-{self.end or ''}"


@dataclass(frozen=True)
class SearchQuery:
    """
    Immutable query shared by every provider call of one search.

    ``query`` may be empty: some providers support plain listing.
    """

    query: str = ""
    max_results: int = 10
    year: str | None = None
    author: str | None = None
    category: str | None = None
    sort_by: SortBy = SortBy.RELEVANCE

    def __post_init__(self) -> None:
        if isinstance(self.max_results, bool) or not isinstance(self.max_results, int) or self.max_results < 1:
            raise InvalidParameterError("max_results", self.max_results, "a positive integer")
        if self.year is not None:
            YearRange.parse(self.year)
        if not isinstance(self.sort_by, SortBy):
            object.__setattr__(self, "sort_by", SortBy.parse(self.sort_by))

    @classmethod
    def builder(cls, query: str = "") -> SearchQueryBuilder:
        return SearchQueryBuilder(query)

    def year_range(self) -> YearRange | None:
        return YearRange.parse(self.year) if self.year else None

    def cache_fields(self) -> dict[str, Any]:
        """Normalized fields that identify this query for caching."""
        return {
            "query": normalize_text(self.query),
            "max_results": self.max_results,
            "year": self.year_range().to_param() if self.year else None,
            "author": normalize_text(self.author) or None,
            "category": normalize_text(self.category) or None,
            "sort_by": self.sort_by.value,
        }


class SearchQueryBuilder:
    """Fluent builder for :class:`SearchQuery`."""

    def __init__(self, query: str = "") -> None:
        self._values: dict[str, Any] = {"query": query}

    def max_results(self, max_results: int) -> SearchQueryBuilder:
        self._values["max_results"] = max_results
        return self

    def year(self, year: str | int | None) -> SearchQueryBuilder:
        self._values["year"] = str(year) if year is not None else None
        return self

    def author(self, author: str | None) -> SearchQueryBuilder:
        self._values["author"] = author or None
        return self

    def category(self, category: str | None) -> SearchQueryBuilder:
        self._values["category"] = category or None
        return self

    def sort_by(self, sort_by: SortBy | str) -> SearchQueryBuilder:
        self._values["sort_by"] = SortBy.parse(sort_by)
        return self

    def build(self) -> SearchQuery:
        return SearchQuery(**self._values)


@dataclass(frozen=True)
class SearchResponse:
    """Papers returned by one provider for one request."""

    papers: tuple[Paper, ...]
    source: str
    query: str = ""
    total_results: int | None = None
    has_more: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.papers, tuple):
            object.__setattr__(self, "papers", tuple(self.papers))

    def __len__(self) -> int:
        return len(self.papers)

    def to_dict(self) -> dict[str, Any]:
        return {
            "papers": [paper.to_dict() for paper in self.papers],
            "source": self.source,
            "query": self.query,
            "total_results": self.total_results,
            "has_more": self.has_more,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        return cls(
            papers=tuple(Paper.from_dict(p) for p in data.get("papers", [])),
            source=data["source"],
            query=data.get("query", ""),
            total_results=data.get("total_results"),
            has_more=bool(data.get("has_more", False)),
        )


@dataclass(frozen=True)
class CitationRequest:
    """Citation / reference / related-paper lookup for one paper."""

    paper_id: str
    max_results: int = 20

    def __post_init__(self) -> None:
        if not self.paper_id or not self.paper_id.strip():
            raise InvalidParameterError("paper_id", self.paper_id, "a non-empty identifier")
        if self.max_results < 1:
            raise InvalidParameterError("max_results", self.max_results, "a positive integer")

    def cache_fields(self) -> dict[str, Any]:
        return {"paper_id": self.paper_id.strip(), "max_results": self.max_results}


@dataclass(frozen=True)
class DownloadRequest:
    paper_id: str
    save_path: str
    doi: str | None = None


@dataclass(frozen=True)
class ReadRequest:
    paper_id: str
    save_path: str
    download_if_missing: bool = True


@dataclass(frozen=True)
class DownloadResult:
    path: str = ""
    bytes: int = 0
    success: bool = False
    error: str | None = None

    @classmethod
    def ok(cls, path: str, size: int) -> DownloadResult:
        return cls(path=path, bytes=size, success=True)

    @classmethod
    def failed(cls, error: str) -> DownloadResult:
        return cls(success=False, error=error)

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "bytes": self.bytes, "success": self.success, "error": self.error}


@dataclass(frozen=True)
class ReadResult:
    text: str = ""
    pages: int | None = None
    success: bool = False
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def ok(cls, text: str, pages: int | None = None) -> ReadResult:
        return cls(text=text, pages=pages, success=True)

    @classmethod
    def failed(cls, error: str) -> ReadResult:
        return cls(success=False, error=error)

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "pages": self.pages, "success": self.success, "error": self.error}
