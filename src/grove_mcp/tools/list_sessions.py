"""
Session query tools.

Provides list_sessions, get_session and session_counts for reading the
session registry.
"""

import logging

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.session import ServerSession

from grove.sessions import SessionStatus

from ..context import AppContext
from ..utils import HINTS, error_response

logger = logging.getLogger("grove")


def register_tools(mcp: FastMCP) -> None:
    """Register session query tools on the MCP server."""

    @mcp.tool()
    async def list_sessions(
        ctx: Context[ServerSession, AppContext],
        grove_id: str | None = None,
        workspace_path: str | None = None,
        status_filter: str | None = None,
        running_only: bool = False,
    ) -> dict:
        """
        List tracked agent sessions.

        Args:
            grove_id: Only sessions attached to this grove
            workspace_path: Only sessions started in exactly this directory
            status_filter: One of "active", "idle", "attention", "finished", "closed"
            running_only: Only sessions whose process is running and not ended

        Returns:
            Dict with:
                - sessions: List of session dicts, most recently updated first
                - count: Number of sessions returned
        """
        store = ctx.request_context.lifespan_context.store

        if running_only:
            sessions = store.get_all_active_sessions()
        else:
            sessions = store.read().sessions

        if grove_id:
            sessions = [s for s in sessions if s.grove_id == grove_id]
        if workspace_path:
            sessions = [s for s in sessions if s.workspace_path == workspace_path]
        if status_filter:
            try:
                status = SessionStatus(status_filter)
            except ValueError:
                return error_response(
                    f"Invalid status filter: {status_filter}",
                    hint=HINTS["invalid_status"],
                )
            sessions = [s for s in sessions if s.status == status]

        sessions = sorted(sessions, key=lambda s: s.last_update or "", reverse=True)
        return {
            "sessions": [s.to_dict() for s in sessions],
            "count": len(sessions),
        }

    @mcp.tool()
    async def get_session(
        ctx: Context[ServerSession, AppContext],
        session_id: str,
    ) -> dict:
        """
        Get one tracked session by its agent session id.

        Args:
            session_id: Session id assigned by the agent tool
        """
        store = ctx.request_context.lifespan_context.store
        session = store.get_session(session_id)
        if session is None:
            return error_response(
                f"Session not found: {session_id}",
                hint=HINTS["session_not_found"],
            )
        return session.to_dict()

    @mcp.tool()
    async def session_counts(
        ctx: Context[ServerSession, AppContext],
        grove_id: str | None = None,
    ) -> dict:
        """
        Count sessions by status for a status indicator.

        Args:
            grove_id: Restrict counts to one grove (all sessions if omitted)

        Returns:
            Dict with active, idle, attention and total counts
        """
        store = ctx.request_context.lifespan_context.store
        return store.get_session_counts(grove_id)
