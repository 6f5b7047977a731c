"""
OS process table queries.

Liveness is a heuristic: a session counts as running if any process's command
line contains the session id. That can misfire in rare cases (an unrelated
process mentioning the id, or an agent started without the id on its command
line), which is why it sits behind a small class that can be swapped out.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import subprocess

logger = logging.getLogger("grove")

DEFAULT_PS_COMMAND = ("ps", "aux")
DEFAULT_TIMEOUT = 5.0


@dataclass(frozen=True)
class ProcessSnapshot:
    """Raw process listing captured at one point in time."""

    listing: str = ""

    def contains(self, needle: str) -> bool:
        return bool(needle) and needle in self.listing


class ProcessTable:
    """Captures the process listing by running ``ps``."""

    def __init__(
        self,
        command: tuple[str, ...] = DEFAULT_PS_COMMAND,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.command = command
        self.timeout = timeout

    def snapshot(self) -> ProcessSnapshot:
        """
        Capture the current process listing.

        Any failure yields an empty snapshot, so sessions read as not running
        rather than as active.
        """
        try:
            result = subprocess.run(
                list(self.command),
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            logger.warning("Process table query timed out after %.1fs", self.timeout)
            return ProcessSnapshot()
        except OSError as exc:
            logger.warning("Process table query failed: %s", exc)
            return ProcessSnapshot()

        if result.returncode != 0:
            logger.warning(
                "Process table query exited with %d: %s",
                result.returncode,
                result.stderr.strip(),
            )
            return ProcessSnapshot()
        return ProcessSnapshot(result.stdout)

    def is_running(self, session_id: str) -> bool:
        return self.snapshot().contains(session_id)
