"""MCP tool registration."""

from mcp.server.fastmcp import FastMCP

from . import list_sessions, reconcile_sessions


def register_all_tools(mcp: FastMCP) -> None:
    """Register every grove tool on the MCP server."""
    list_sessions.register_tools(mcp)
    reconcile_sessions.register_tools(mcp)
