"""
Logging for the grove server and hook CLI.

Everything goes to ``<data_dir>/logs/grove.log``; stderr only carries
warnings by default because hook output is shown inside the agent's UI.

The long-running server owns size-based rotation (gzip-compressed
backups). Hook invocations are many short processes that may overlap, so
they append through a WatchedFileHandler and never rotate themselves.
"""

from __future__ import annotations

import gzip
import logging
from logging.handlers import RotatingFileHandler, WatchedFileHandler
import os
from pathlib import Path
import shutil

from grove.config import get_int_env
from grove.paths import resolve_data_dir

LOG_FORMAT = "%(asctime)s - %(name)s - %(process)d - %(levelname)s - %(message)s"


def log_file_path() -> Path:
    return resolve_data_dir() / "logs" / "grove.log"


def _gzip_rotator(source: str, dest: str) -> None:
    with open(source, "rb") as src, gzip.open(dest, "wb") as dst:
        shutil.copyfileobj(src, dst)
    try:
        os.remove(source)
    except FileNotFoundError:
        pass


def _file_handler(log_path: Path, rotate: bool) -> logging.Handler:
    if not rotate:
        return WatchedFileHandler(log_path, encoding="utf-8")

    max_mb = get_int_env("GROVE_LOG_MAX_SIZE_MB", default=10, min_value=1)
    backups = get_int_env("GROVE_LOG_BACKUP_COUNT", default=5, min_value=1)
    handler = RotatingFileHandler(
        log_path,
        maxBytes=max_mb * 1024 * 1024,
        backupCount=backups,
        encoding="utf-8",
    )
    handler.namer = lambda name: f"{name}.gz"
    handler.rotator = _gzip_rotator
    return handler


def _level(env_name: str, default: int) -> int:
    value = getattr(logging, os.getenv(env_name, "").upper(), None)
    return value if isinstance(value, int) else default


def configure_logging(*, rotate: bool = True) -> Path:
    """
    Install grove's file and stderr handlers on the root logger.

    Args:
        rotate: Rotate the log by size (server). Pass False from hook
            invocations.

    Returns:
        Path to the log file.
    """
    log_path = log_file_path()
    log_path.parent.mkdir(parents=True, exist_ok=True)

    fmt = logging.Formatter(LOG_FORMAT)
    file_handler = _file_handler(log_path, rotate)
    file_handler.setFormatter(fmt)

    stderr_handler = logging.StreamHandler()
    stderr_handler.setLevel(_level("GROVE_STDERR_LOG_LEVEL", logging.WARNING))
    stderr_handler.setFormatter(fmt)

    root = logging.getLogger()
    root.setLevel(_level("GROVE_LOG_LEVEL", logging.INFO))
    # Replace existing handlers so repeated calls don't duplicate output.
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.addHandler(file_handler)
    root.addHandler(stderr_handler)

    return log_path
