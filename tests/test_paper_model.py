"""Tests for Paper, PaperBuilder and SourceType."""

from __future__ import annotations

import pytest

from research_master.domain.entities import Paper, PaperBuilder, SourceType
from research_master.domain.entities.paper import split_list
from research_master.shared.exceptions import InvalidParameterError

from conftest import make_paper


# ============================================================================
# SourceType
# ============================================================================


class TestSourceType:
    def test_values_are_plain_strings(self):
        assert SourceType.SEMANTIC_SCHOLAR == "semantic"
        assert SourceType("crossref") is SourceType.CROSSREF

    def test_display_names(self):
        assert SourceType.ARXIV.display_name == "arXiv"
        assert SourceType.SEMANTIC_SCHOLAR.display_name == "Semantic Scholar"
        assert SourceType.EUROPE_PMC.display_name == "Europe PMC"


# ============================================================================
# PaperBuilder
# ============================================================================


class TestPaperBuilder:
    def test_minimal_paper(self):
        paper = PaperBuilder("p1", "Title", "https://x/p1", "arxiv").build()
        assert paper.paper_id == "p1"
        assert paper.source == "arxiv"
        assert paper.authors == ""
        assert paper.doi is None
        assert paper.citations is None

    def test_fluent_setters(self):
        paper = (
            PaperBuilder("p1", "Title", "https://x/p1", "crossref")
            .authors(["Ada Lovelace", " ", "Alan Turing"])
            .abstract("About computing")
            .doi("10.1/abc")
            .published_date("1843")
            .pdf_url("https://x/p1.pdf")
            .categories(["cs", "math"])
            .keywords("engines; notes")
            .citations(42)
            .references(["r1", "r2"])
            .extra("venue", "Notes")
            .build()
        )
        assert paper.author_list() == ["Ada Lovelace", "Alan Turing"]
        assert paper.category_list() == ["cs", "math"]
        assert paper.keyword_list() == ["engines", "notes"]
        assert paper.references == "r1; r2"
        assert paper.citations == 42
        assert paper.extra == {"venue": "Notes"}
        assert paper.has_pdf()

    def test_blank_id_rejected(self):
        with pytest.raises(InvalidParameterError):
            PaperBuilder("  ", "Title", "https://x", "arxiv").build()

    def test_id_is_trimmed(self):
        paper = PaperBuilder(" p1 ", "Title", "https://x", "arxiv").build()
        assert paper.paper_id == "p1"

    def test_empty_optional_values_become_none(self):
        paper = PaperBuilder("p1", "T", "u", "s").doi("").pdf_url("").build()
        assert paper.doi is None
        assert not paper.has_pdf()


# ============================================================================
# Paper
# ============================================================================


class TestPaper:
    def test_primary_id_prefers_doi(self):
        assert make_paper("p1", doi="10.1/x").primary_id() == "10.1/x"
        assert make_paper("p1").primary_id() == "p1"

    def test_papers_are_immutable(self, sample_paper):
        with pytest.raises(AttributeError):
            sample_paper.title = "changed"  # type: ignore[misc]

    def test_extra_is_read_only(self):
        source = {"venue": "NeurIPS"}
        paper = Paper("p", "t", "u", "s", extra=source)
        with pytest.raises(TypeError):
            paper.extra["venue"] = "ICML"  # type: ignore[index]
        source["venue"] = "ICML"
        assert paper.extra["venue"] == "NeurIPS"
        assert isinstance(paper.to_dict()["extra"], dict)

    def test_merged_with_fills_empty_fields(self):
        primary = make_paper("a", "arxiv", doi="10.1/x", citations=3)
        other = (
            PaperBuilder("b", "Other", "https://b", "crossref")
            .doi("10.1/x")
            .abstract("An abstract")
            .pdf_url("https://b.pdf")
            .citations(10)
            .extra("journal", "J")
            .build()
        )
        merged = primary.merged_with(other)
        assert merged.paper_id == "a"
        assert merged.source == "arxiv"
        assert merged.title == primary.title
        assert merged.abstract == "An abstract"
        assert merged.pdf_url == "https://b.pdf"
        assert merged.citations == 10
        assert merged.extra == {"journal": "J"}

    def test_merged_with_keeps_existing_values(self):
        primary = make_paper("a", title="Kept")
        other = make_paper("b", title="Ignored")
        assert primary.merged_with(other).title == "Kept"

    def test_dict_round_trip(self, sample_paper):
        data = sample_paper.to_dict()
        assert data["source"] == "arxiv"
        assert Paper.from_dict(data) == sample_paper

    def test_from_dict_ignores_unknown_keys(self):
        paper = Paper.from_dict(
            {"paper_id": "p", "title": "t", "url": "u", "source": "s", "unexpected": 1}
        )
        assert paper.paper_id == "p"


class TestSplitList:
    def test_split_and_trim(self):
        assert split_list("a; b ;;c") == ["a", "b", "c"]

    def test_empty(self):
        assert split_list("") == []
