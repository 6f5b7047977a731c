"""Filesystem locations used by grove."""

from __future__ import annotations

import os
from pathlib import Path

DATA_DIR_ENV = "GROVE_DATA_DIR"


def resolve_data_dir() -> Path:
    """Return the grove data directory (``~/.grove`` unless overridden)."""
    override = os.environ.get(DATA_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".grove"


def sessions_path() -> Path:
    return resolve_data_dir() / "sessions.json"


def groves_index_path() -> Path:
    return resolve_data_dir() / "groves.json"


def config_path() -> Path:
    return resolve_data_dir() / "config.json"
