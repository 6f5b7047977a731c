"""Tests for the grove command line."""

import io
import json

import pytest

from grove.sessions import SessionStatus
from grove.store import SessionStore
from grove_mcp import server as server_module

read_hook_payload = server_module._read_hook_payload


@pytest.fixture(autouse=True)
def grove_home(tmp_path, monkeypatch):
    """Point every grove path at a temp dir and keep logging out of the way."""
    data_dir = tmp_path / "grove"
    monkeypatch.setenv("GROVE_DATA_DIR", str(data_dir))
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.setenv("GROVE_CLAUDE_DIR", str(tmp_path / "claude"))
    monkeypatch.setattr(server_module, "configure_logging", lambda **kwargs: data_dir / "logs" / "grove.log")
    monkeypatch.setattr(server_module, "_read_hook_payload", lambda: {})
    return data_dir


def _store(data_dir) -> SessionStore:
    return SessionStore(data_dir / "sessions.json")


class TestHookCommands:
    """session-* subcommands."""

    def test_session_start_and_transitions(self, grove_home, capsys):
        server_module.main(["session-start", "--session-id", "s1", "--cwd", "/w/api"])
        server_module.main(["session-attention", "--session-id", "s1"])

        out = capsys.readouterr().out
        assert "claude session s1 started" in out
        assert "Session s1 needs attention" in out
        assert _store(grove_home).get_session("s1").status == SessionStatus.ATTENTION

        server_module.main(["session-end", "--session-id", "s1"])
        session = _store(grove_home).get_session("s1")
        assert session.status == SessionStatus.CLOSED
        assert session.is_running is False

    def test_ids_come_from_hook_payload(self, grove_home, monkeypatch):
        monkeypatch.setattr(
            server_module,
            "_read_hook_payload",
            lambda: {"session_id": "from-stdin", "cwd": "/w/web", "hook_event_name": "SessionStart"},
        )

        server_module.main(["session-start", "--agent-type", "claude"])

        session = _store(grove_home).get_session("from-stdin")
        assert session.workspace_path == "/w/web"

    def test_failure_exits_nonzero(self, grove_home, capsys):
        with pytest.raises(SystemExit) as excinfo:
            server_module.main(["session-idle", "--session-id", "ghost"])

        assert excinfo.value.code == 1
        assert "Session ghost not found" in capsys.readouterr().err

    def test_missing_session_id_fails(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            server_module.main(["session-end"])

        assert excinfo.value.code == 1
        assert "Missing session id" in capsys.readouterr().err


class TestReadHookPayload:
    def test_reads_json_object_from_stdin(self, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO('{"session_id": "s9", "cwd": "/w"}'))

        assert read_hook_payload() == {"session_id": "s9", "cwd": "/w"}

    @pytest.mark.parametrize("raw", ["", "not json", "[1, 2]"])
    def test_ignores_unusable_input(self, monkeypatch, raw):
        monkeypatch.setattr("sys.stdin", io.StringIO(raw))

        assert read_hook_payload() == {}


class TestQueryCommands:
    """sessions and reconcile subcommands."""

    def test_sessions_json(self, grove_home, capsys):
        server_module.main(["session-start", "--session-id", "s1", "--cwd", "/w/api"])
        server_module.main(["session-start", "--session-id", "s2", "--cwd", "/w/web"])
        capsys.readouterr()

        server_module.main(["sessions", "--workspace", "/w/web", "--json"])

        payload = json.loads(capsys.readouterr().out)
        assert [s["sessionId"] for s in payload] == ["s2"]

    def test_sessions_text_when_empty(self, capsys):
        server_module.main(["sessions"])

        assert capsys.readouterr().out.strip() == "No sessions tracked."

    def test_sessions_text_lists_records(self, grove_home, capsys):
        server_module.main(["session-start", "--session-id", "s1", "--cwd", "/w/api"])
        capsys.readouterr()

        server_module.main(["sessions", "--running"])

        line = capsys.readouterr().out.strip()
        assert line.startswith("active")
        assert "s1" in line
        assert "grove=-" in line

    def test_reconcile_json_reports_detected_sessions(self, grove_home, tmp_path, capsys):
        project = tmp_path / "claude" / "projects" / "-w-api"
        project.mkdir(parents=True)
        (project / "zz-detected-session.jsonl").write_text(
            json.dumps({"sessionId": "zz-detected-session", "cwd": "/w/api"}) + "\n",
            encoding="utf-8",
        )

        server_module.main(["reconcile", "--json"])

        report = json.loads(capsys.readouterr().out)
        assert report["added"] == 1
        assert report["errors"] == []
        session = _store(grove_home).get_session("zz-detected-session")
        assert session.workspace_path == "/w/api"


class TestConfigCommands:
    def test_config_init_then_show(self, grove_home, capsys):
        server_module.main(["config", "init"])
        assert (grove_home / "config.json").exists()

        server_module.main(["config", "show"])

        out = capsys.readouterr().out
        rendered = json.loads(out[out.index("{"):])
        assert rendered["sessions"]["stale_threshold_minutes"] == 60

    def test_config_init_refuses_overwrite(self, grove_home, capsys):
        server_module.main(["config", "init"])

        with pytest.raises(SystemExit) as excinfo:
            server_module.main(["config", "init"])

        assert excinfo.value.code == 1
        assert "already exists" in capsys.readouterr().err


class TestSetupHooksCommand:
    def test_missing_claude_settings(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            server_module.main(["setup-hooks", "--verify"])

        assert excinfo.value.code == 1
        assert "Claude Code settings not found" in capsys.readouterr().err

    def test_installs_hooks(self, tmp_path, capsys):
        settings = tmp_path / "home" / ".claude" / "settings.json"
        settings.parent.mkdir(parents=True)
        settings.write_text("{}", encoding="utf-8")

        server_module.main(["setup-hooks"])

        assert "configured successfully" in capsys.readouterr().out
        hooks = json.loads(settings.read_text(encoding="utf-8"))["hooks"]
        assert hooks["Stop"][0]["hooks"][0]["command"] == "grove session-idle"
