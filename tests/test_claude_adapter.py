"""Tests for Claude Code session detection."""

import json
from pathlib import Path

from grove.adapters import AdapterRegistry, AgentAdapter, ClaudeAdapter, ProcessSnapshot
from grove.adapters.claude import decode_event, parse_session_log, status_from_lines
from grove.sessions import AgentType, SessionStatus

T0 = "2026-03-01T10:00:00.000Z"
T1 = "2026-03-01T10:01:00.000Z"
T2 = "2026-03-01T10:02:00.000Z"


class FakeProcessTable:
    """Process table returning a fixed listing."""

    def __init__(self, listing: str = ""):
        self.listing = listing
        self.snapshots = 0

    def snapshot(self) -> ProcessSnapshot:
        self.snapshots += 1
        return ProcessSnapshot(self.listing)

    def is_running(self, session_id: str) -> bool:
        return self.snapshot().contains(session_id)


def _write_log(claude_dir: Path, project: str, name: str, events: list) -> Path:
    project_dir = claude_dir / "projects" / project
    project_dir.mkdir(parents=True, exist_ok=True)
    path = project_dir / name
    lines = [event if isinstance(event, str) else json.dumps(event) for event in events]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def _scenario_events() -> list[dict]:
    return [
        {"sessionId": "s1", "cwd": "/ws/a", "timestamp": T0},
        {"type": "user", "timestamp": T1},
        {"type": "notification", "timestamp": T2},
    ]


def _lines(*events) -> list[bytes]:
    return [json.dumps(event).encode() for event in events]


class TestEndToEndDetection:
    """Log file plus process table to detected session."""

    def test_running_session_with_notification_needs_attention(self, tmp_path):
        claude_dir = tmp_path / ".claude"
        log_path = _write_log(claude_dir, "-ws-a", "s1.jsonl", _scenario_events())
        adapter = ClaudeAdapter(claude_dir, FakeProcessTable("u 42 claude --resume s1"))

        sessions = adapter.detect_sessions()

        assert len(sessions) == 1
        session = sessions[0]
        assert session.session_id == "s1"
        assert session.agent_type == AgentType.CLAUDE
        assert session.workspace_path == "/ws/a"
        assert session.status == SessionStatus.ATTENTION
        assert session.is_running is True
        assert session.status_source == "detection"
        assert session.observed_at == T2
        assert session.metadata == {
            "branch": None,
            "startedAt": T0,
            "lastActivity": T2,
            "logPath": str(log_path),
        }

    def test_missing_process_forces_finished(self, tmp_path):
        """Liveness overrides the log heuristic."""
        claude_dir = tmp_path / ".claude"
        _write_log(claude_dir, "-ws-a", "s1.jsonl", _scenario_events())
        adapter = ClaudeAdapter(claude_dir, FakeProcessTable("u 42 vim notes.txt"))

        (session,) = adapter.detect_sessions()

        assert session.status == SessionStatus.FINISHED
        assert session.is_running is False


class TestLogDiscovery:
    """Which files are read and how bad input is handled."""

    def test_skips_agent_transcripts_and_other_files(self, tmp_path):
        claude_dir = tmp_path / ".claude"
        _write_log(claude_dir, "p", "s1.jsonl", _scenario_events())
        _write_log(
            claude_dir,
            "p",
            "agent-abc.jsonl",
            [{"sessionId": "sub", "cwd": "/ws/a", "timestamp": T0}],
        )
        _write_log(claude_dir, "p", "notes.txt", [{"sessionId": "txt", "cwd": "/x"}])
        adapter = ClaudeAdapter(claude_dir, FakeProcessTable())

        assert [s.session_id for s in adapter.detect_sessions()] == ["s1"]

    def test_malformed_lines_are_skipped(self, tmp_path):
        claude_dir = tmp_path / ".claude"
        _write_log(
            claude_dir,
            "p",
            "s1.jsonl",
            [
                "{broken",
                {"sessionId": 7, "cwd": "/ws/wrong-type"},
                {"sessionId": "s1", "cwd": "/ws/a", "timestamp": T0, "gitBranch": "main"},
                "[1, 2, 3]",
                {"type": "assistant", "timestamp": T1},
                "",
            ],
        )
        adapter = ClaudeAdapter(claude_dir, FakeProcessTable("s1"))

        (session,) = adapter.detect_sessions()

        assert session.workspace_path == "/ws/a"
        assert session.status == SessionStatus.ACTIVE
        assert session.metadata["branch"] == "main"
        assert session.metadata["lastActivity"] == T1

    def test_log_without_identity_is_ignored(self, tmp_path):
        claude_dir = tmp_path / ".claude"
        _write_log(claude_dir, "p", "s1.jsonl", [{"type": "user", "timestamp": T0}])
        adapter = ClaudeAdapter(claude_dir, FakeProcessTable("s1"))

        assert adapter.detect_sessions() == []

    def test_multiple_projects_share_one_process_snapshot(self, tmp_path):
        claude_dir = tmp_path / ".claude"
        _write_log(claude_dir, "a", "s1.jsonl", [{"sessionId": "s1", "cwd": "/a"}])
        _write_log(claude_dir, "b", "s2.jsonl", [{"sessionId": "s2", "cwd": "/b"}])
        processes = FakeProcessTable("claude s2")
        adapter = ClaudeAdapter(claude_dir, processes)

        sessions = {s.session_id: s for s in adapter.detect_sessions()}

        assert processes.snapshots == 1
        assert sessions["s1"].is_running is False
        assert sessions["s2"].is_running is True
        assert sessions["s2"].status == SessionStatus.IDLE

    def test_missing_projects_dir_detects_nothing(self, tmp_path):
        claude_dir = tmp_path / ".claude"
        claude_dir.mkdir()
        adapter = ClaudeAdapter(claude_dir, FakeProcessTable())

        assert adapter.is_available() is True
        assert adapter.detect_sessions() == []

    def test_unavailable_without_claude_dir(self, tmp_path):
        adapter = ClaudeAdapter(tmp_path / "nope", FakeProcessTable())

        assert adapter.is_available() is False


class TestSingleSessionQueries:
    """verify_session and get_session_status."""

    def test_verify_and_status_for_known_session(self, tmp_path):
        claude_dir = tmp_path / ".claude"
        _write_log(claude_dir, "p", "s1.jsonl", _scenario_events())
        adapter = ClaudeAdapter(claude_dir, FakeProcessTable("s1"))

        assert adapter.verify_session("s1").workspace_path == "/ws/a"
        assert adapter.get_session_status("s1") == SessionStatus.ATTENTION

    def test_unknown_session_is_none(self, tmp_path):
        claude_dir = tmp_path / ".claude"
        _write_log(claude_dir, "p", "s1.jsonl", _scenario_events())
        adapter = ClaudeAdapter(claude_dir, FakeProcessTable("s1"))

        assert adapter.verify_session("other") is None
        assert adapter.get_session_status("other") is None


class TestStatusHeuristic:
    """Mapping of the trailing log window to a status."""

    def test_notification_means_attention(self):
        lines = _lines({"type": "assistant"}, {"type": "notification"})
        assert status_from_lines(lines) == SessionStatus.ATTENTION

    def test_conversation_and_tool_events_mean_active(self):
        for event_type in ("assistant", "user", "queue-operation"):
            lines = _lines({"type": "notification"}, {"type": event_type})
            assert status_from_lines(lines) == SessionStatus.ACTIVE

    def test_no_typed_event_means_idle(self):
        lines = _lines({"timestamp": T0}, {"cwd": "/x"})
        assert status_from_lines(lines) == SessionStatus.IDLE

    def test_unmapped_type_means_idle(self):
        lines = _lines({"type": "user"}, {"type": "summary"})
        assert status_from_lines(lines) == SessionStatus.IDLE

    def test_only_last_ten_lines_are_considered(self):
        lines = _lines({"type": "notification"}, *[{"timestamp": T0}] * 10)
        assert status_from_lines(lines) == SessionStatus.IDLE

    def test_untyped_trailing_lines_are_skipped(self):
        lines = _lines({"type": "notification"}, {"timestamp": T1}) + [b"garbage"]
        assert status_from_lines(lines) == SessionStatus.ATTENTION


class TestEventDecoding:
    """Low-level line decoding."""

    def test_decode_event_reads_camel_case_fields(self):
        event = decode_event(b'{"sessionId": "s1", "gitBranch": "dev", "extra": {"x": 1}}')

        assert event.session_id == "s1"
        assert event.git_branch == "dev"
        assert event.cwd is None

    def test_decode_event_rejects_garbage(self):
        assert decode_event(b"") is None
        assert decode_event(b"not json") is None
        assert decode_event(b'"a string"') is None

    def test_parse_session_log_uses_first_identity_event(self):
        content = b"\n".join(
            _lines(
                {"sessionId": "first", "cwd": "/one", "timestamp": T0},
                {"sessionId": "second", "cwd": "/two", "timestamp": T1},
            )
        )

        parsed = parse_session_log(content)

        assert parsed.session_id == "first"
        assert parsed.cwd == "/one"
        assert parsed.started_at == T0
        assert parsed.last_activity == T1


class TestAdapterRegistry:
    """AdapterRegistry bookkeeping."""

    def test_register_get_and_available(self, tmp_path):
        claude_dir = tmp_path / ".claude"
        claude_dir.mkdir()
        adapter = ClaudeAdapter(claude_dir, FakeProcessTable())
        registry = AdapterRegistry()

        registry.register(adapter)

        assert isinstance(adapter, AgentAdapter)
        assert len(registry) == 1
        assert registry.get(AgentType.CLAUDE) is adapter
        assert registry.get(AgentType.CODEX) is None
        assert registry.get_all() == [adapter]
        assert registry.get_available() == [adapter]

    def test_unavailable_adapter_is_filtered(self, tmp_path):
        registry = AdapterRegistry()
        registry.register(ClaudeAdapter(tmp_path / "missing", FakeProcessTable()))

        assert registry.get_available() == []
