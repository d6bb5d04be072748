"""
Paper Entity - normalized record shared by every provider.

Every adapter turns its wire format into a :class:`Paper` through
:class:`PaperBuilder`; nothing downstream ever sees provider-specific
shapes. Papers are immutable once built and may be shared freely between
concurrent dispatch calls and the cache.

Example:
    >>> paper = (
    ...     PaperBuilder("2301.00001", "Attention Is All You Need",
    ...                  "https://arxiv.org/abs/2301.00001", SourceType.ARXIV)
    ...     .authors("Vaswani, A.; Shazeer, N.")
    ...     .doi("10.48550/arXiv.1706.03762")
    ...     .published_date("2017-06-12")
    ...     .build()
    ... )
    >>> paper.primary_id()
    '10.48550/arXiv.1706.03762'
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from enum import StrEnum
from types import MappingProxyType
from typing import Any, Self

from research_master.shared.exceptions import InvalidParameterError


class SourceType(StrEnum):
    """Known provider type tags. Adapters may also use plain strings."""

    ARXIV = "arxiv"
    PUBMED = "pubmed"
    BIORXIV = "biorxiv"
    MEDRXIV = "medrxiv"
    SEMANTIC_SCHOLAR = "semantic"
    OPENALEX = "openalex"
    CROSSREF = "crossref"
    IACR = "iacr"
    PMC = "pmc"
    HAL = "hal"
    DBLP = "dblp"
    SSRN = "ssrn"
    GOOGLE_SCHOLAR = "google_scholar"
    CORE = "core"
    EUROPE_PMC = "europe_pmc"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES.get(self, self.value)


_DISPLAY_NAMES: dict[SourceType, str] = {
    SourceType.ARXIV: "arXiv",
    SourceType.PUBMED: "PubMed",
    SourceType.BIORXIV: "bioRxiv",
    SourceType.MEDRXIV: "medRxiv",
    SourceType.SEMANTIC_SCHOLAR: "Semantic Scholar",
    SourceType.OPENALEX: "OpenAlex",
    SourceType.CROSSREF: "CrossRef",
    SourceType.IACR: "IACR ePrint",
    SourceType.PMC: "PubMed Central",
    SourceType.HAL: "HAL",
    SourceType.DBLP: "DBLP",
    SourceType.SSRN: "SSRN",
    SourceType.GOOGLE_SCHOLAR: "Google Scholar",
    SourceType.CORE: "CORE",
    SourceType.EUROPE_PMC: "Europe PMC",
}


def split_list(value: str) -> list[str]:
    """Split a semicolon-joined display string into trimmed, non-empty items."""
    return [item.strip() for item in value.split(";") if item.strip()]


@dataclass(frozen=True)
class Paper:
    """
    Normalized paper record.

    Attributes:
        paper_id: Provider-local identifier (never empty)
        title: Paper title
        url: Canonical landing page
        source: Originating provider's type tag
        authors: Semicolon-joined author names
        abstract: Abstract text
        doi: DOI, if known
        published_date: Free-form year/date string
        updated_date: Free-form last-updated date
        pdf_url: Direct PDF link, if any
        categories: Semicolon-joined subject categories
        keywords: Semicolon-joined keywords
        citations: Citation count reported by the provider
        references: Semicolon-joined reference identifiers
        extra: Provider-specific extras (JSON-compatible values, read-only)
    """

    paper_id: str
    title: str
    url: str
    source: str
    authors: str = ""
    abstract: str = ""
    doi: str | None = None
    published_date: str | None = None
    updated_date: str | None = None
    pdf_url: str | None = None
    categories: str = ""
    keywords: str = ""
    citations: int | None = None
    references: str = ""
    extra: Mapping[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        # Read-only view; papers are shared through the cache
        object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))

    def primary_id(self) -> str:
        """DOI if present, else the provider-local id."""
        return self.doi or self.paper_id

    def author_list(self) -> list[str]:
        return split_list(self.authors)

    def category_list(self) -> list[str]:
        return split_list(self.categories)

    def keyword_list(self) -> list[str]:
        return split_list(self.keywords)

    def has_pdf(self) -> bool:
        return bool(self.pdf_url)

    def merged_with(self, other: Paper) -> Paper:
        """
        Combine two records describing the same work.

        Fields already set on ``self`` win; empty ones are filled from
        ``other``. The larger citation count is kept.
        """
        changes: dict[str, Any] = {}
        for f in fields(self):
            if f.name in ("paper_id", "source", "citations", "extra"):
                continue
            if not getattr(self, f.name) and getattr(other, f.name):
                changes[f.name] = getattr(other, f.name)

        counts = [c for c in (self.citations, other.citations) if c is not None]
        if counts:
            changes["citations"] = max(counts)
        if other.extra:
            changes["extra"] = {**other.extra, **self.extra}
        return replace(self, **changes) if changes else self

    def to_dict(self) -> dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["source"] = str(self.source)
        data["extra"] = dict(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["extra"] = dict(values.get("extra") or {})
        return cls(**values)


class PaperBuilder:
    """Fluent builder used by adapters to assemble a :class:`Paper`."""

    def __init__(self, paper_id: str, title: str, url: str, source: str) -> None:
        self._values: dict[str, Any] = {
            "paper_id": paper_id,
            "title": title,
            "url": url,
            "source": source,
        }
        self._extra: dict[str, Any] = {}

    def _set(self, name: str, value: Any) -> PaperBuilder:
        self._values[name] = value
        return self

    def authors(self, authors: str | list[str]) -> PaperBuilder:
        if not isinstance(authors, str):
            authors = "; ".join(a.strip() for a in authors if a and a.strip())
        return self._set("authors", authors)

    def abstract(self, text: str) -> PaperBuilder:
        return self._set("abstract", text)

    def doi(self, doi: str | None) -> PaperBuilder:
        return self._set("doi", doi or None)

    def published_date(self, date: str | None) -> PaperBuilder:
        return self._set("published_date", date or None)

    def updated_date(self, date: str | None) -> PaperBuilder:
        return self._set("updated_date", date or None)

    def pdf_url(self, url: str | None) -> PaperBuilder:
        return self._set("pdf_url", url or None)

    def categories(self, categories: str | list[str]) -> PaperBuilder:
        if not isinstance(categories, str):
            categories = "; ".join(categories)
        return self._set("categories", categories)

    def keywords(self, keywords: str | list[str]) -> PaperBuilder:
        if not isinstance(keywords, str):
            keywords = "; ".join(keywords)
        return self._set("keywords", keywords)

    def citations(self, count: int | None) -> PaperBuilder:
        return self._set("citations", count)

    def references(self, references: str | list[str]) -> PaperBuilder:
        if not isinstance(references, str):
            references = "; ".join(references)
        return self._set("references", references)

    def extra(self, key: str, value: Any) -> PaperBuilder:
        self._extra[key] = value
        return self

    def build(self) -> Paper:
        paper_id = (self._values.get("paper_id") or "").strip()
        if not paper_id:
            raise InvalidParameterError("paper_id", self._values.get("paper_id"), "a non-empty identifier")
        return Paper(**{**self._values, "paper_id": paper_id}, extra=dict(self._extra))
