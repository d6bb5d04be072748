"""
Allow running the MCP server as: python -m research_master
"""

from __future__ import annotations

from research_master.presentation.mcp_server import main

if __name__ == "__main__":
    main()
