"""
Configuration for grove.

Settings live in ``~/.grove/config.json``. Missing keys take the dataclass
defaults; a handful of values can be overridden from the environment.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import json
import logging
import os
from pathlib import Path

from .errors import ConfigError
from .paths import config_path

logger = logging.getLogger("grove")

CONFIG_VERSION = 1


@dataclass
class SessionsConfig:
    """Session registry settings."""

    stale_threshold_minutes: int = 60
    poll_interval_seconds: float = 5.0
    detect_timeout_seconds: float | None = 30.0
    create_on_first_read: bool = False
    silent_write_errors: bool = False


@dataclass
class AgentsConfig:
    """Agent data locations. ``None`` means the agent's default."""

    claude_dir: str | None = None


@dataclass
class GroveConfig:
    version: int = CONFIG_VERSION
    sessions: SessionsConfig = field(default_factory=SessionsConfig)
    agents: AgentsConfig = field(default_factory=AgentsConfig)

    def to_dict(self) -> dict:
        return asdict(self)


def load_config(path: Path | None = None) -> GroveConfig:
    """
    Load the config file, returning defaults when it does not exist.

    Raises:
        ConfigError: If the file is not valid JSON or a value has the wrong type.
    """
    path = path or config_path()
    if not path.exists():
        return GroveConfig()
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Could not read {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a JSON object")
    return _parse_config(raw)


def load_effective_config(path: Path | None = None) -> GroveConfig:
    """Load the config file and apply environment overrides.

    An invalid config file is logged and replaced with defaults.
    """
    try:
        config = load_config(path)
    except ConfigError as exc:
        logger.warning("Invalid config file; using defaults: %s", exc)
        config = GroveConfig()

    sessions = config.sessions
    sessions.stale_threshold_minutes = get_int_env(
        "GROVE_STALE_THRESHOLD_MINUTES",
        default=sessions.stale_threshold_minutes,
        min_value=1,
    )
    sessions.poll_interval_seconds = get_float_env(
        "GROVE_POLL_INTERVAL_SECONDS",
        default=sessions.poll_interval_seconds,
        min_value=0.1,
    )
    claude_dir = os.environ.get("GROVE_CLAUDE_DIR")
    if claude_dir:
        config.agents.claude_dir = claude_dir
    return config


def init_config(path: Path | None = None, *, force: bool = False) -> Path:
    """Write the default config to disk and return its path."""
    path = path or config_path()
    if path.exists() and not force:
        raise ConfigError(f"Config already exists at {path} (use --force to overwrite)")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(GroveConfig().to_dict(), indent=2) + "\n", encoding="utf-8")
    return path


def render_config_json(path: Path | None = None) -> str:
    return json.dumps(load_effective_config(path).to_dict(), indent=2)


def get_int_env(name: str, *, default: int, min_value: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError:
        return default
    if parsed < min_value:
        return default
    return parsed


def get_float_env(name: str, *, default: float, min_value: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = float(raw)
    except ValueError:
        return default
    if parsed < min_value:
        return default
    return parsed


def _parse_config(raw: dict) -> GroveConfig:
    sessions_raw = _section(raw, "sessions")
    agents_raw = _section(raw, "agents")

    sessions = SessionsConfig()
    sessions.stale_threshold_minutes = _typed(
        sessions_raw, "stale_threshold_minutes", int, sessions.stale_threshold_minutes
    )
    sessions.poll_interval_seconds = float(
        _typed(sessions_raw, "poll_interval_seconds", (int, float), sessions.poll_interval_seconds)
    )
    timeout = sessions_raw.get("detect_timeout_seconds", sessions.detect_timeout_seconds)
    if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, (int, float))):
        raise ConfigError("sessions.detect_timeout_seconds must be a number or null")
    sessions.detect_timeout_seconds = float(timeout) if timeout is not None else None
    sessions.create_on_first_read = _typed(
        sessions_raw, "create_on_first_read", bool, sessions.create_on_first_read
    )
    sessions.silent_write_errors = _typed(
        sessions_raw, "silent_write_errors", bool, sessions.silent_write_errors
    )

    agents = AgentsConfig()
    claude_dir = agents_raw.get("claude_dir")
    if claude_dir is not None and not isinstance(claude_dir, str):
        raise ConfigError("agents.claude_dir must be a string or null")
    agents.claude_dir = claude_dir

    version = raw.get("version", CONFIG_VERSION)
    if not isinstance(version, int) or isinstance(version, bool):
        raise ConfigError("version must be an integer")

    return GroveConfig(version=version, sessions=sessions, agents=agents)


def _section(raw: dict, key: str) -> dict:
    value = raw.get(key, {})
    if not isinstance(value, dict):
        raise ConfigError(f"{key} must be an object")
    return value


def _typed(section: dict, key: str, expected, default):
    value = section.get(key, default)
    # bool is an int subclass; reject it where a number is expected.
    if isinstance(value, bool) and expected is not bool:
        raise ConfigError(f"{key} has invalid value {value!r}")
    if not isinstance(value, expected):
        raise ConfigError(f"{key} has invalid value {value!r}")
    return value
