"""
Research Master MCP Server

This module provides a Model Context Protocol (MCP) server for federated
academic paper search.

Usage as standalone server:
    python -m research_master --config ~/.config/research-master/config.toml

Or in mcp.json:
    {
        "servers": {
            "research-master": {
                "type": "stdio",
                "command": "python",
                "args": ["-m", "research_master"]
            }
        }
    }

Usage for integration:
    from research_master.presentation.mcp_server import create_server, register_search_tools

    # Option 1: Create standalone server
    server = create_server()
    server.run()

    # Option 2: Register tools to an existing server
    register_search_tools(your_mcp_server, dispatcher)
"""

from __future__ import annotations

from .server import create_server, main
from .tools import register_search_tools

__all__ = ["create_server", "main", "register_search_tools"]
