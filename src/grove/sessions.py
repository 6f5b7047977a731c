"""
Session data model.

An AgentSession is one observed or recorded run of an external coding agent.
The full set of sessions is persisted as a single SessionsDocument; a
SessionIndex is a throwaway in-memory projection of that document.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
import logging
from typing import Any, Literal, Optional

logger = logging.getLogger("grove")

DOCUMENT_VERSION = "1.0.0"

# Which writer last set a session's status.
StatusSource = Literal["hook", "detection"]


class SessionStatus(str, Enum):
    """Status of an agent session."""

    ACTIVE = "active"  # Agent is working
    IDLE = "idle"  # Waiting for user input
    ATTENTION = "attention"  # Needs user action (permission prompt, question)
    FINISHED = "finished"  # Process is gone
    CLOSED = "closed"  # SessionEnd hook fired


# Statuses that only make sense while the agent process is alive.
LIVE_STATUSES = frozenset({SessionStatus.ACTIVE, SessionStatus.IDLE, SessionStatus.ATTENTION})


class AgentType(str, Enum):
    """Agent tools that can report sessions."""

    CLAUDE = "claude"
    GEMINI = "gemini"
    CODEX = "codex"
    CUSTOM = "custom"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format a datetime as ISO 8601 UTC with a Zulu suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def now_timestamp() -> str:
    return format_timestamp(utc_now())


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse ISO 8601 timestamps, including Zulu suffixes. Returns None if invalid."""
    if not value or not isinstance(value, str):
        return None
    value = value.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass
class AgentSession:
    """
    One run of an agent process.

    Attributes:
        session_id: Id assigned by the agent tool itself (primary key)
        agent_type: Which adapter produced or owns the record
        workspace_path: Directory the agent was started in
        grove_id: Owning grove, or None when no known workspace matched
        worktree_path: Worktree containing workspace_path, if any
        status: Current SessionStatus
        is_running: Whether a matching process was found in the process table
        last_update: ISO timestamp of the most recent observation or transition
        metadata: Informational extras (branch, startedAt, lastActivity, logPath)
        status_source: Which writer ("hook" or "detection") last set status
        observed_at: Timestamp of the newest evidence behind status
    """

    session_id: str
    agent_type: AgentType
    workspace_path: Optional[str]
    grove_id: Optional[str] = None
    worktree_path: Optional[str] = None
    status: SessionStatus = SessionStatus.ACTIVE
    is_running: bool = True
    last_update: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    status_source: StatusSource = "detection"
    observed_at: Optional[str] = None

    def normalized(self, previous: Optional[SessionStatus] = None) -> "AgentSession":
        """
        Return a copy that satisfies the liveness invariant.

        A session that is not running cannot be active, idle or waiting for
        attention; it is forced to finished, or back to closed when
        ``previous`` (the status before this change) was closed.
        """
        if not self.is_running and self.status in LIVE_STATUSES:
            if previous == SessionStatus.CLOSED:
                return replace(self, status=SessionStatus.CLOSED)
            return replace(self, status=SessionStatus.FINISHED)
        return self

    def to_dict(self) -> dict:
        """Convert to the persisted camelCase layout."""
        return {
            "sessionId": self.session_id,
            "agentType": self.agent_type.value,
            "groveId": self.grove_id,
            "workspacePath": self.workspace_path,
            "worktreePath": self.worktree_path,
            "status": self.status.value,
            "isRunning": self.is_running,
            "lastUpdate": self.last_update,
            "metadata": dict(self.metadata),
            "statusSource": self.status_source,
            "observedAt": self.observed_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AgentSession":
        """
        Build a session from its persisted layout.

        Raises:
            ValueError: If sessionId is missing or a value is out of range.
        """
        session_id = data.get("sessionId")
        if not session_id or not isinstance(session_id, str):
            raise ValueError("session record has no sessionId")

        status_source = data.get("statusSource", "detection")
        if status_source not in ("hook", "detection"):
            status_source = "detection"

        metadata = data.get("metadata") or {}
        if not isinstance(metadata, dict):
            metadata = {}

        return cls(
            session_id=session_id,
            agent_type=AgentType(data.get("agentType", AgentType.CLAUDE.value)),
            grove_id=data.get("groveId"),
            workspace_path=data.get("workspacePath"),
            worktree_path=data.get("worktreePath"),
            status=SessionStatus(data.get("status", SessionStatus.IDLE.value)),
            is_running=bool(data.get("isRunning", False)),
            last_update=data.get("lastUpdate"),
            metadata=metadata,
            status_source=status_source,
            observed_at=data.get("observedAt"),
        )


# Fields accepted by SessionStore.update_session patches.
PATCHABLE_FIELDS = frozenset(
    {
        "agent_type",
        "grove_id",
        "workspace_path",
        "worktree_path",
        "status",
        "is_running",
        "last_update",
        "metadata",
        "status_source",
        "observed_at",
    }
)


@dataclass
class SessionsDocument:
    """The unit of durable storage: every session plus a version stamp."""

    sessions: list[AgentSession] = field(default_factory=list)
    version: str = DOCUMENT_VERSION
    last_updated: str = field(default_factory=now_timestamp)

    def find(self, session_id: str) -> Optional[AgentSession]:
        for session in self.sessions:
            if session.session_id == session_id:
                return session
        return None

    def to_dict(self) -> dict:
        return {
            "sessions": [session.to_dict() for session in self.sessions],
            "version": self.version,
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SessionsDocument":
        """Build a document, dropping records that cannot be parsed."""
        sessions: list[AgentSession] = []
        seen: dict[str, int] = {}
        raw_sessions = data.get("sessions")
        if not isinstance(raw_sessions, list):
            raw_sessions = []
        for raw in raw_sessions:
            if not isinstance(raw, dict):
                continue
            try:
                session = AgentSession.from_dict(raw)
            except (ValueError, TypeError) as exc:
                logger.warning("Dropping unreadable session record: %s", exc)
                continue
            # Collapse duplicate ids onto the last occurrence.
            if session.session_id in seen:
                sessions[seen[session.session_id]] = session
                continue
            seen[session.session_id] = len(sessions)
            sessions.append(session)

        return cls(
            sessions=sessions,
            version=str(data.get("version") or DOCUMENT_VERSION),
            last_updated=data.get("lastUpdated") or now_timestamp(),
        )


@dataclass
class SessionIndex:
    """Lookup tables derived from a SessionsDocument. Never persisted."""

    by_workspace: dict[str, list[AgentSession]] = field(default_factory=dict)
    by_grove: dict[str, list[AgentSession]] = field(default_factory=dict)
    by_session_id: dict[str, AgentSession] = field(default_factory=dict)
    built_at: str = field(default_factory=now_timestamp)

    @classmethod
    def build(cls, document: SessionsDocument) -> "SessionIndex":
        index = cls()
        for session in document.sessions:
            if session.workspace_path:
                index.by_workspace.setdefault(session.workspace_path, []).append(session)
            if session.grove_id:
                index.by_grove.setdefault(session.grove_id, []).append(session)
            index.by_session_id[session.session_id] = session
        return index


def count_statuses(sessions: list[AgentSession]) -> dict[str, int]:
    """Aggregate counts consumed by status indicators."""
    return {
        "active": sum(1 for s in sessions if s.status == SessionStatus.ACTIVE),
        "idle": sum(1 for s in sessions if s.status == SessionStatus.IDLE),
        "attention": sum(1 for s in sessions if s.status == SessionStatus.ATTENTION),
        "total": len(sessions),
    }
