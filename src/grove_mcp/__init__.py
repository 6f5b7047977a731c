"""MCP server and command-line interface for grove session tracking."""
