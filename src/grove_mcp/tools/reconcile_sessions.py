"""
Reconcile sessions tool.

Provides reconcile_sessions for rescanning agent logs on demand.
"""

import asyncio
import logging

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.session import ServerSession

from ..context import AppContext

logger = logging.getLogger("grove")


def register_tools(mcp: FastMCP) -> None:
    """Register reconcile_sessions tool on the MCP server."""

    @mcp.tool()
    async def reconcile_sessions(
        ctx: Context[ServerSession, AppContext],
    ) -> dict:
        """
        Rescan agent logs and the process table and merge into the registry.

        Sessions no longer running are marked finished; finished and closed
        sessions older than the stale threshold are removed.

        Returns:
            Dict with:
                - added: sessions seen for the first time
                - updated: existing sessions refreshed
                - removed: stale sessions removed
                - errors: list of non-fatal per-agent errors
        """
        app_ctx = ctx.request_context.lifespan_context
        # Detection blocks on file I/O and a `ps` subprocess.
        report = await asyncio.to_thread(app_ctx.reconcile)
        if report.errors:
            logger.warning("reconcile_sessions encountered errors: %s", report.errors)
        return report.to_dict()
