"""
Claude Code adapter.

Claude Code writes one JSONL log per session under
``~/.claude/projects/<encoded-project-path>/<session-id>.jsonl``. Each line is
one event. The first event carrying both ``sessionId`` and ``cwd`` identifies
the session; the last event carrying ``timestamp`` is the latest activity;
the most recent typed event near the end of the file drives the status.

Files named ``agent-*.jsonl`` are sub-agent transcripts, not user sessions,
and are skipped.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Optional

import msgspec

from ..sessions import AgentSession, AgentType, SessionStatus, now_timestamp
from .process import ProcessSnapshot, ProcessTable

logger = logging.getLogger("grove")

# Number of trailing log lines scanned for the most recent typed event.
STATUS_WINDOW = 10

# Event type -> status while the session is running.
EVENT_STATUS = {
    "queue-operation": SessionStatus.ACTIVE,  # Tool invocation queued
    "assistant": SessionStatus.ACTIVE,
    "user": SessionStatus.ACTIVE,
    "notification": SessionStatus.ATTENTION,
}


class ClaudeLogEvent(msgspec.Struct, rename="camel"):
    """The subset of a Claude Code log event that session tracking reads."""

    session_id: Optional[str] = None
    cwd: Optional[str] = None
    timestamp: Optional[str] = None
    type: Optional[str] = None
    git_branch: Optional[str] = None


_decoder = msgspec.json.Decoder(ClaudeLogEvent)


def decode_event(line: bytes) -> Optional[ClaudeLogEvent]:
    """Decode one log line; None for blank, malformed or non-object lines."""
    line = line.strip()
    if not line:
        return None
    try:
        return _decoder.decode(line)
    except msgspec.DecodeError:
        # Also covers ValidationError (wrong field types, non-object lines).
        return None


@dataclass
class ParsedLog:
    """Identity and activity extracted from one session log."""

    session_id: str
    cwd: str
    started_at: Optional[str]
    last_activity: Optional[str]
    branch: Optional[str]
    status: SessionStatus


def status_from_lines(lines: list[bytes]) -> SessionStatus:
    """
    Classify a session from its trailing log lines.

    Walks the last STATUS_WINDOW lines newest-first and maps the first event
    with a ``type``. No typed event, or an unmapped type, means idle.
    """
    for line in reversed(lines[-STATUS_WINDOW:]):
        event = decode_event(line)
        if event is None or not event.type:
            continue
        return EVENT_STATUS.get(event.type, SessionStatus.IDLE)
    return SessionStatus.IDLE


def parse_session_log(content: bytes) -> Optional[ParsedLog]:
    """Parse a session log. Returns None if no event identifies the session."""
    lines = content.strip().split(b"\n")
    seed: Optional[ClaudeLogEvent] = None
    last_timestamp: Optional[str] = None

    for line in lines:
        event = decode_event(line)
        if event is None:
            continue
        if seed is None and event.session_id and event.cwd:
            seed = event
        if event.timestamp:
            last_timestamp = event.timestamp

    if seed is None:
        return None

    return ParsedLog(
        session_id=seed.session_id,
        cwd=seed.cwd,
        started_at=seed.timestamp,
        last_activity=last_timestamp or seed.timestamp,
        branch=seed.git_branch,
        status=status_from_lines(lines),
    )


class ClaudeAdapter:
    """
    Detects Claude Code sessions from ``~/.claude/projects`` logs.

    Args:
        claude_dir: Claude's data directory (default ``~/.claude``)
        process_table: Source of process listings for liveness checks
    """

    agent_type = AgentType.CLAUDE

    def __init__(
        self,
        claude_dir: Path | None = None,
        process_table: ProcessTable | None = None,
    ):
        self.claude_dir = claude_dir or Path.home() / ".claude"
        self.process_table = process_table or ProcessTable()

    @property
    def projects_dir(self) -> Path:
        return self.claude_dir / "projects"

    def is_available(self) -> bool:
        return self.claude_dir.is_dir()

    def detect_sessions(self) -> list[AgentSession]:
        """
        Detect every logged Claude session.

        Unreadable directories and files are skipped. Liveness overrides the
        log heuristic: a session with no matching process is finished.
        """
        processes = self.process_table.snapshot()
        sessions: list[AgentSession] = []
        for log_path in self._session_logs():
            session = self._session_from_log(log_path, processes)
            if session is not None:
                sessions.append(session)
        return sessions

    def verify_session(self, session_id: str) -> Optional[AgentSession]:
        for session in self.detect_sessions():
            if session.session_id == session_id:
                return session
        return None

    def get_session_status(self, session_id: str) -> Optional[SessionStatus]:
        session = self.verify_session(session_id)
        return session.status if session else None

    def _project_dirs(self) -> list[Path]:
        try:
            return sorted(p for p in self.projects_dir.iterdir() if p.is_dir())
        except FileNotFoundError:
            return []
        except OSError as exc:
            logger.warning("Cannot list Claude projects in %s: %s", self.projects_dir, exc)
            return []

    def _session_logs(self) -> list[Path]:
        logs: list[Path] = []
        for project_dir in self._project_dirs():
            try:
                entries = sorted(project_dir.iterdir())
            except OSError as exc:
                logger.debug("Skipping unreadable project dir %s: %s", project_dir, exc)
                continue
            logs.extend(
                entry
                for entry in entries
                if entry.suffix == ".jsonl" and not entry.name.startswith("agent-")
            )
        return logs

    def _session_from_log(
        self,
        log_path: Path,
        processes: ProcessSnapshot,
    ) -> Optional[AgentSession]:
        try:
            content = log_path.read_bytes()
        except OSError as exc:
            logger.debug("Skipping unreadable session log %s: %s", log_path, exc)
            return None

        parsed = parse_session_log(content)
        if parsed is None:
            logger.debug("No session identity in %s", log_path)
            return None

        is_running = processes.contains(parsed.session_id)
        return AgentSession(
            session_id=parsed.session_id,
            agent_type=self.agent_type,
            workspace_path=parsed.cwd,
            status=parsed.status if is_running else SessionStatus.FINISHED,
            is_running=is_running,
            last_update=now_timestamp(),
            metadata={
                "branch": parsed.branch,
                "startedAt": parsed.started_at,
                "lastActivity": parsed.last_activity,
                "logPath": str(log_path),
            },
            status_source="detection",
            observed_at=parsed.last_activity,
        )
