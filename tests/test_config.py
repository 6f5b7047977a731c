"""Tests for grove configuration loading."""

import json

import pytest

from grove.config import (
    GroveConfig,
    init_config,
    load_config,
    load_effective_config,
    render_config_json,
)
from grove.errors import ConfigError
from grove.paths import config_path, sessions_path


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch):
    for name in (
        "GROVE_STALE_THRESHOLD_MINUTES",
        "GROVE_POLL_INTERVAL_SECONDS",
        "GROVE_CLAUDE_DIR",
    ):
        monkeypatch.delenv(name, raising=False)


def _write(path, payload):
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


class TestLoadConfig:
    """load_config parsing and validation."""

    def test_missing_file_returns_defaults(self, tmp_path):
        config = load_config(tmp_path / "config.json")

        assert config == GroveConfig()
        assert config.sessions.stale_threshold_minutes == 60
        assert config.sessions.poll_interval_seconds == 5.0
        assert config.agents.claude_dir is None

    def test_partial_file_keeps_other_defaults(self, tmp_path):
        path = _write(
            tmp_path / "config.json",
            {"sessions": {"stale_threshold_minutes": 15, "detect_timeout_seconds": None}},
        )

        config = load_config(path)

        assert config.sessions.stale_threshold_minutes == 15
        assert config.sessions.detect_timeout_seconds is None
        assert config.sessions.silent_write_errors is False

    def test_integer_poll_interval_is_accepted(self, tmp_path):
        path = _write(tmp_path / "config.json", {"sessions": {"poll_interval_seconds": 2}})

        assert load_config(path).sessions.poll_interval_seconds == 2.0

    @pytest.mark.parametrize(
        "payload",
        [
            {"sessions": {"stale_threshold_minutes": "soon"}},
            {"sessions": {"stale_threshold_minutes": True}},
            {"sessions": {"create_on_first_read": "yes"}},
            {"sessions": {"detect_timeout_seconds": "30"}},
            {"sessions": []},
            {"agents": {"claude_dir": 3}},
            {"version": "one"},
        ],
    )
    def test_invalid_values_raise(self, tmp_path, payload):
        path = _write(tmp_path / "config.json", payload)

        with pytest.raises(ConfigError):
            load_config(path)

    def test_invalid_json_raises(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{", encoding="utf-8")

        with pytest.raises(ConfigError):
            load_config(path)


class TestEffectiveConfig:
    """Environment overrides and fallbacks."""

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = _write(tmp_path / "config.json", {"sessions": {"stale_threshold_minutes": 15}})
        monkeypatch.setenv("GROVE_STALE_THRESHOLD_MINUTES", "90")
        monkeypatch.setenv("GROVE_POLL_INTERVAL_SECONDS", "1.5")
        monkeypatch.setenv("GROVE_CLAUDE_DIR", "/opt/claude")

        config = load_effective_config(path)

        assert config.sessions.stale_threshold_minutes == 90
        assert config.sessions.poll_interval_seconds == 1.5
        assert config.agents.claude_dir == "/opt/claude"

    def test_invalid_env_values_are_ignored(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GROVE_STALE_THRESHOLD_MINUTES", "0")
        monkeypatch.setenv("GROVE_POLL_INTERVAL_SECONDS", "fast")

        config = load_effective_config(tmp_path / "config.json")

        assert config.sessions.stale_threshold_minutes == 60
        assert config.sessions.poll_interval_seconds == 5.0

    def test_invalid_file_falls_back_to_defaults(self, tmp_path, caplog):
        path = _write(tmp_path / "config.json", {"sessions": {"stale_threshold_minutes": "x"}})

        with caplog.at_level("WARNING", logger="grove"):
            config = load_effective_config(path)

        assert config.sessions.stale_threshold_minutes == 60
        assert "Invalid config file" in caplog.text


class TestInitConfig:
    """init_config and rendering."""

    def test_init_writes_defaults(self, tmp_path):
        path = init_config(tmp_path / "nested" / "config.json")

        assert load_config(path) == GroveConfig()

    def test_init_refuses_to_overwrite_without_force(self, tmp_path):
        path = _write(tmp_path / "config.json", {"sessions": {"stale_threshold_minutes": 5}})

        with pytest.raises(ConfigError):
            init_config(path)
        init_config(path, force=True)

        assert load_config(path).sessions.stale_threshold_minutes == 60

    def test_render_config_json(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GROVE_CLAUDE_DIR", "/opt/claude")

        rendered = json.loads(render_config_json(tmp_path / "config.json"))

        assert rendered["agents"]["claude_dir"] == "/opt/claude"
        assert rendered["sessions"]["stale_threshold_minutes"] == 60


class TestPaths:
    def test_data_dir_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GROVE_DATA_DIR", str(tmp_path))

        assert config_path() == tmp_path / "config.json"
        assert sessions_path() == tmp_path / "sessions.json"
