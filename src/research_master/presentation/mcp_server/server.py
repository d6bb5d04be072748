"""
Research Master MCP Server

A Model Context Protocol server for federated academic paper search.

Architecture:
- tools.py: Tool implementations (thin wrappers around the dispatcher)
- container: DI container (dependency-injector) for service lifecycle
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import TYPE_CHECKING, cast

from mcp.server.fastmcp import FastMCP

from research_master.container import ApplicationContainer

from .tools import register_search_tools

if TYPE_CHECKING:
    from research_master.application.search.dispatcher import SearchDispatcher

logger = logging.getLogger(__name__)

SERVER_INSTRUCTIONS = """\
Federated academic paper search. Each tool queries every configured source
that supports the operation, concurrently, and returns merged JSON.
Sources that fail are listed under "failures"; results from the others are
still returned. Use list_sources to see which source ids support what.
"""

# ── Module-level DI container ──────────────────────────────────────────────
_container: ApplicationContainer | None = None


def get_container() -> ApplicationContainer:
    """Get the application DI container.

    Raises:
        RuntimeError: If ``create_server()`` has not been called yet.
    """
    if _container is None:
        msg = "Container not initialized. Call create_server() first."
        raise RuntimeError(msg)
    return _container


def create_server(
    config_path: str | None = None,
    name: str = "research-master",
    container: ApplicationContainer | None = None,
) -> FastMCP:
    """
    Create and configure the Research Master MCP server.

    Args:
        config_path: TOML or YAML config file (default: standard locations + env).
        name: Server name.
        container: Pre-built container (tests pass one with overridden providers).

    Returns:
        Configured FastMCP server instance.
    """
    global _container
    logger.info("Initializing Research Master MCP Server...")

    if container is None:
        container = ApplicationContainer()
        container.config.from_dict({"config_path": config_path})
    _container = container

    dispatcher = cast("SearchDispatcher", container.dispatcher())
    logger.info(f"Sources: {', '.join(dispatcher.registry.ids()) or '(none)'}")

    mcp = FastMCP(
        name,
        instructions=SERVER_INSTRUCTIONS,
    )
    count = register_search_tools(mcp, dispatcher)
    logger.info(f"Research Master MCP Server initialized with {count} tools")
    return mcp


def main(argv: list[str] | None = None) -> None:
    """Run the MCP server."""
    parser = argparse.ArgumentParser(
        prog="research-master",
        description="Federated academic paper search MCP server",
    )
    parser.add_argument("--config", help="Path to a TOML or YAML config file")
    parser.add_argument(
        "--transport",
        choices=["stdio", "sse", "streamable-http"],
        default="stdio",
        help="MCP transport (default: stdio)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    args = parser.parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    server = create_server(config_path=args.config)
    try:
        server.run(transport=args.transport)
    finally:
        dispatcher = cast("SearchDispatcher", get_container().dispatcher())
        asyncio.run(dispatcher.aclose())
        logger.info("Shutdown: source clients closed")


if __name__ == "__main__":
    main()
