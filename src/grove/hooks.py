"""
Hook-driven session transitions.

Agent tools call back into grove from their lifecycle hooks (session start,
stop/idle, notification, session end). Each call is a single-session write
straight into the store, marked with status_source="hook" so reconciliation
knows the status came from the agent itself rather than from log heuristics.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Callable, Iterable, Optional

from .errors import GroveError
from .sessions import AgentSession, AgentType, SessionStatus, now_timestamp
from .store import SessionStore
from .workspaces import Workspace, load_workspaces, resolve_location

logger = logging.getLogger("grove")

HOOK_EVENTS = ("start", "idle", "attention", "end")


@dataclass(frozen=True)
class HookResult:
    """Outcome of a hook call, shown to whoever triggered it."""

    success: bool
    message: str


class SessionHooks:
    """
    Applies lifecycle transitions reported by agent hooks.

    Args:
        store: Session store to write into
        workspace_loader: Returns the known workspaces; called on session start
    """

    def __init__(
        self,
        store: SessionStore,
        workspace_loader: Callable[[], Iterable[Workspace]] = load_workspaces,
    ):
        self.store = store
        self.workspace_loader = workspace_loader

    def on_session_start(
        self,
        session_id: str,
        agent_type: AgentType | str,
        cwd: str,
        metadata: Optional[dict] = None,
    ) -> HookResult:
        """Create or reset a session as active and running, resolving its grove."""
        session_id = (session_id or "").strip()
        cwd = (cwd or "").strip()
        if not session_id:
            return HookResult(False, "Missing session id")
        if not cwd:
            return HookResult(False, "Missing working directory")
        try:
            agent = AgentType(agent_type)
        except ValueError:
            valid = ", ".join(t.value for t in AgentType)
            return HookResult(False, f"Unknown agent type: {agent_type} (expected one of {valid})")

        workspace, worktree = resolve_location(cwd, self.workspace_loader())
        now = now_timestamp()
        session = AgentSession(
            session_id=session_id,
            agent_type=agent,
            workspace_path=cwd,
            grove_id=workspace.id if workspace else None,
            worktree_path=worktree.worktree_path if worktree else None,
            status=SessionStatus.ACTIVE,
            is_running=True,
            last_update=now,
            metadata={"startedAt": now, **(metadata or {})},
            status_source="hook",
            observed_at=now,
        )
        try:
            self.store.add_session(session)
        except GroveError as exc:
            return HookResult(False, f"Failed to start session: {exc}")

        logger.info(
            "Session %s started (%s) in %s, grove=%s",
            session_id,
            agent.value,
            cwd,
            session.grove_id,
        )
        return HookResult(True, f"{agent.value} session {session_id} started")

    def on_session_idle(self, session_id: str) -> HookResult:
        return self._transition(session_id, SessionStatus.IDLE, "is now idle")

    def on_session_attention(self, session_id: str) -> HookResult:
        return self._transition(session_id, SessionStatus.ATTENTION, "needs attention")

    def on_session_end(self, session_id: str) -> HookResult:
        return self._transition(session_id, SessionStatus.CLOSED, "ended", is_running=False)

    def handle(
        self,
        event: str,
        session_id: str,
        *,
        agent_type: AgentType | str = AgentType.CLAUDE,
        cwd: str | None = None,
    ) -> HookResult:
        """Dispatch a hook by event name ("start", "idle", "attention", "end")."""
        if event == "start":
            return self.on_session_start(session_id, agent_type, cwd or "")
        if event == "idle":
            return self.on_session_idle(session_id)
        if event == "attention":
            return self.on_session_attention(session_id)
        if event == "end":
            return self.on_session_end(session_id)
        return HookResult(False, f"Unknown hook event: {event}")

    def _transition(
        self,
        session_id: str,
        status: SessionStatus,
        description: str,
        **extra,
    ) -> HookResult:
        session_id = (session_id or "").strip()
        if not session_id:
            return HookResult(False, "Missing session id")
        try:
            updated = self.store.update_session(
                session_id,
                status=status,
                status_source="hook",
                observed_at=now_timestamp(),
                **extra,
            )
        except GroveError as exc:
            return HookResult(False, f"Failed to update session: {exc}")

        if updated is None:
            return HookResult(False, f"Session {session_id} not found")
        if updated.status != status:
            # The record is not running, so the liveness rule kept it terminal.
            return HookResult(True, f"Session {session_id} is not running ({updated.status.value})")

        logger.info("Session %s %s", session_id, description)
        return HookResult(True, f"Session {session_id} {description}")
