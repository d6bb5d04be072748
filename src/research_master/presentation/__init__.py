"""
Presentation Layer - External APIs

Contains:
- mcp_server: Model Context Protocol server and tools
"""

from .mcp_server import create_server, main

__all__ = [
    "create_server",
    "main",
]
