"""Tests for the MCP tool layer and server factory."""

from __future__ import annotations

import json

import pytest
from dependency_injector import providers
from mcp.server.fastmcp import FastMCP

from research_master.container import ApplicationContainer
from research_master.domain.entities import SourceCapabilities as Caps
from research_master.presentation.mcp_server import server as server_module
from research_master.presentation.mcp_server.server import create_server, get_container
from research_master.presentation.mcp_server.tools import register_search_tools
from research_master.shared.exceptions import NetworkError

from conftest import MockSource, build_dispatcher, make_paper

EXPECTED_TOOLS = {
    "search_papers",
    "search_by_author",
    "get_paper_by_doi",
    "get_citations",
    "get_references",
    "get_related_papers",
    "download_paper",
    "list_sources",
}


@pytest.fixture
def sources():
    return [
        MockSource(
            "arxiv",
            Caps.SEARCH | Caps.DOWNLOAD,
            papers=[make_paper("1706.03762", "arxiv", doi="10.48550/arXiv.1706.03762")],
        ),
        MockSource(
            "semantic",
            Caps.SEARCH | Caps.CITATIONS | Caps.DOI_LOOKUP | Caps.AUTHOR_SEARCH,
            papers=[make_paper("s2-1", "semantic", doi="10.48550/arXiv.1706.03762", citations=9)],
        ),
        MockSource("broken", error=NetworkError("connection reset")),
    ]


@pytest.fixture
def tools(sources):
    """Registered tool functions by name."""
    mcp = FastMCP(name="test")
    register_search_tools(mcp, build_dispatcher(sources))
    return {tool.name: tool.fn for tool in mcp._tool_manager._tools.values()}


async def call(tools, name, **kwargs):
    return json.loads(await tools[name](**kwargs))


# ============================================================================
# Registration
# ============================================================================


class TestRegistration:
    def test_all_tools_registered(self, sources):
        mcp = FastMCP(name="test")
        count = register_search_tools(mcp, build_dispatcher(sources))
        assert count == len(EXPECTED_TOOLS)
        assert {t.name for t in mcp._tool_manager._tools.values()} == EXPECTED_TOOLS

    def test_tools_have_descriptions(self, sources):
        mcp = FastMCP(name="test")
        register_search_tools(mcp, build_dispatcher(sources))
        for tool in mcp._tool_manager._tools.values():
            assert tool.description, tool.name


# ============================================================================
# Search tools
# ============================================================================


class TestSearchTools:
    async def test_search_papers(self, tools):
        data = await call(tools, "search_papers", query="attention")
        assert data["operation"] == "search"
        assert data["total"] == 2
        assert [s["source"] for s in data["sources"]] == ["arxiv", "semantic"]
        assert data["failures"][0]["source"] == "broken"
        assert data["failures"][0]["type"] == "NetworkError"

    async def test_search_papers_deduplicate(self, tools):
        data = await call(tools, "search_papers", query="attention", deduplicate=True)
        assert data["total"] == 1
        assert data["papers"][0]["citations"] == 9

    async def test_search_papers_source_string(self, tools):
        data = await call(tools, "search_papers", query="x", sources="semantic, nope")
        assert [s["source"] for s in data["sources"]] == ["semantic"]
        assert data["failures"][0]["type"] == "UnknownSourceError"

    @pytest.mark.parametrize(
        "kwargs",
        [{"max_results": 0}, {"year": "someday"}, {"sort_by": "popularity"}],
    )
    async def test_search_papers_invalid_input(self, tools, kwargs):
        data = await call(tools, "search_papers", query="x", **kwargs)
        assert data["tool"] == "search_papers"
        assert data["category"] == "validation"

    async def test_search_by_author(self, tools):
        data = await call(tools, "search_by_author", author="Ashish Vaswani")
        assert data["operation"] == "search_by_author"
        assert [s["source"] for s in data["sources"]] == ["semantic"]

    async def test_search_by_author_blank(self, tools):
        data = await call(tools, "search_by_author", author=" ")
        assert data["tool"] == "search_by_author"


# ============================================================================
# Per-paper tools
# ============================================================================


class TestPaperTools:
    async def test_get_paper_by_doi(self, tools):
        data = await call(tools, "get_paper_by_doi", doi="10.48550/arXiv.1706.03762")
        assert data["paper"]["paper_id"] == "s2-1"
        assert data["results"][0]["source"] == "semantic"

    @pytest.mark.parametrize(
        ("tool", "operation"),
        [
            ("get_citations", "get_citations"),
            ("get_references", "get_references"),
            ("get_related_papers", "get_related"),
        ],
    )
    async def test_citation_tools(self, tools, tool, operation):
        data = await call(tools, tool, paper_id="s2-1", max_results=5)
        assert data["operation"] == operation
        assert data["total"] == 1

    async def test_citation_tool_blank_id(self, tools):
        data = await call(tools, "get_citations", paper_id="  ")
        assert data["tool"] == "get_citations"
        assert "suggestion" in data

    async def test_download_paper(self, tools, temp_dir):
        data = await call(tools, "download_paper", paper_id="1706.03762", save_path=str(temp_dir))
        assert data["operation"] == "download"
        assert data["results"][0]["source"] == "arxiv"
        assert data["results"][0]["value"]["success"] is True

    async def test_download_paper_blank_id(self, tools):
        data = await call(tools, "download_paper", paper_id="")
        assert data["tool"] == "download_paper"

    async def test_list_sources(self, tools):
        data = await call(tools, "list_sources")
        assert [s["id"] for s in data["sources"]] == ["arxiv", "semantic", "broken"]
        assert data["sources"][0]["capabilities"] == ["search", "download"]


# ============================================================================
# Server factory
# ============================================================================


class TestCreateServer:
    def test_create_server_with_container(self, sources, monkeypatch):
        monkeypatch.setattr(server_module, "_container", None)
        container = ApplicationContainer()
        container.sources.override(providers.Object(sources))

        mcp = create_server(container=container)
        assert isinstance(mcp, FastMCP)
        assert get_container() is container
        assert {t.name for t in mcp._tool_manager._tools.values()} == EXPECTED_TOOLS

    def test_get_container_before_create(self, monkeypatch):
        monkeypatch.setattr(server_module, "_container", None)
        with pytest.raises(RuntimeError):
            get_container()
