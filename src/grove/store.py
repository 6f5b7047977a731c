"""
Persistent session store.

All sessions live in one JSON document (``~/.grove/sessions.json``) that is
read in full, mutated, and written back in full. Every mutating call holds an
in-process lock plus an exclusive file lock on a sidecar ``.lock`` file for
the whole read-modify-write cycle, so concurrent hook invocations and
reconciliation passes cannot lose each other's updates. Writes go through a
temp file and an atomic rename, so readers never see a partial document.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import replace
from datetime import timedelta
import json
import logging
import os
from pathlib import Path
import tempfile
import threading
from typing import Callable, Iterator, Optional

from .errors import StoreWriteError
from .sessions import (
    PATCHABLE_FIELDS,
    AgentSession,
    SessionIndex,
    SessionsDocument,
    SessionStatus,
    count_statuses,
    now_timestamp,
    parse_timestamp,
    utc_now,
)

try:
    import fcntl
except ImportError:  # pragma: no cover - platform-specific
    fcntl = None

try:
    import msvcrt
except ImportError:  # pragma: no cover - platform-specific
    msvcrt = None

logger = logging.getLogger("grove")

DEFAULT_STALE_THRESHOLD_MINUTES = 60

Mutator = Callable[[SessionsDocument], Optional[SessionsDocument]]


class SessionStore:
    """
    Durable registry of agent sessions backed by a single JSON file.

    Args:
        path: Location of the sessions document
        create_on_first_read: Persist an empty document when reading a missing file
        silent_write_errors: Log write failures instead of raising StoreWriteError
    """

    def __init__(
        self,
        path: Path,
        *,
        create_on_first_read: bool = False,
        silent_write_errors: bool = False,
    ):
        self._path = Path(path)
        self._create_on_first_read = create_on_first_read
        self._silent_write_errors = silent_write_errors
        self._mutex = threading.RLock()
        self._lock_depth = 0

    @property
    def path(self) -> Path:
        return self._path

    @property
    def lock_path(self) -> Path:
        return self._path.with_name(self._path.name + ".lock")

    # =========================================================================
    # Document I/O
    # =========================================================================

    def read(self) -> SessionsDocument:
        """
        Read the full document.

        A missing file yields an empty document (written to disk only when
        create_on_first_read is set). An unreadable or corrupt file is logged
        and also treated as empty; the next write replaces it.
        """
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            document = SessionsDocument()
            if self._create_on_first_read:
                self.write(document)
            return document
        except OSError as exc:
            logger.warning("Could not read session store %s: %s", self._path, exc)
            return SessionsDocument()

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("Session store %s is not valid JSON, ignoring it: %s", self._path, exc)
            return SessionsDocument()
        if not isinstance(payload, dict):
            logger.warning("Session store %s does not hold an object, ignoring it", self._path)
            return SessionsDocument()
        return SessionsDocument.from_dict(payload)

    def write(self, document: SessionsDocument) -> None:
        """Persist the full document, stamping lastUpdated."""
        with self._locked():
            self._write_unlocked(document)

    def update(self, mutator: Mutator) -> SessionsDocument:
        """
        Atomically read, mutate and write the document.

        The mutator may modify the document in place (returning None) or
        return a replacement document.
        """
        with self._locked():
            document = self.read()
            result = mutator(document)
            if result is not None:
                document = result
            self._write_unlocked(document)
            return document

    # =========================================================================
    # Session operations
    # =========================================================================

    def add_session(self, session: AgentSession) -> AgentSession:
        """
        Insert a session, replacing any existing record with the same id.

        A supplied last_update is kept; otherwise the current time is stamped.
        """
        stored = self._prepare(session)

        def _mutate(document: SessionsDocument) -> None:
            document.sessions = [
                s for s in document.sessions if s.session_id != stored.session_id
            ]
            document.sessions.append(stored)

        self.update(_mutate)
        return stored

    def update_session(self, session_id: str, **changes) -> Optional[AgentSession]:
        """
        Apply a partial patch to one session, always refreshing last_update.

        Returns:
            The updated session, or None if the id is not in the store

        Raises:
            TypeError: If a patch key is not a session field
        """
        unknown = set(changes) - PATCHABLE_FIELDS
        if unknown:
            raise TypeError(f"Unknown session fields: {', '.join(sorted(unknown))}")

        with self._locked():
            document = self.read()
            for position, session in enumerate(document.sessions):
                if session.session_id != session_id:
                    continue
                updated = replace(session, **changes)
                updated = replace(updated, last_update=now_timestamp())
                updated = updated.normalized(previous=session.status)
                document.sessions[position] = updated
                self._write_unlocked(document)
                return updated
        return None

    def remove_session(self, session_id: str) -> bool:
        """Remove a session. Returns True if it was present."""
        with self._locked():
            document = self.read()
            remaining = [s for s in document.sessions if s.session_id != session_id]
            if len(remaining) == len(document.sessions):
                return False
            document.sessions = remaining
            self._write_unlocked(document)
            return True

    def get_session(self, session_id: str) -> Optional[AgentSession]:
        return self.read().find(session_id)

    def get_sessions_by_grove(self, grove_id: str) -> list[AgentSession]:
        return [s for s in self.read().sessions if s.grove_id == grove_id]

    def get_sessions_by_workspace(self, workspace_path: str) -> list[AgentSession]:
        return [s for s in self.read().sessions if s.workspace_path == workspace_path]

    def get_all_active_sessions(self) -> list[AgentSession]:
        """Sessions whose process is running and that have not ended."""
        return [
            s
            for s in self.read().sessions
            if s.is_running and s.status not in (SessionStatus.FINISHED, SessionStatus.CLOSED)
        ]

    def get_session_counts(self, grove_id: str | None = None) -> dict[str, int]:
        """Active/idle/attention/total counts for one grove, or for all sessions."""
        if grove_id is None:
            return count_statuses(self.read().sessions)
        return count_statuses(self.get_sessions_by_grove(grove_id))

    def build_index(self) -> SessionIndex:
        return SessionIndex.build(self.read())

    def relocate_sessions(
        self,
        locate: Callable[[AgentSession], tuple[Optional[str], Optional[str]]],
    ) -> int:
        """
        Re-derive grove_id and worktree_path for every stored session.

        ``locate`` maps a session to its (grove_id, worktree_path). Only
        location fields change; last_update is left alone so relocation does
        not keep terminal sessions from going stale. The document is only
        written when some session moved.

        Returns:
            Number of sessions whose location changed
        """
        with self._locked():
            document = self.read()
            moved = 0
            for position, session in enumerate(document.sessions):
                grove_id, worktree_path = locate(session)
                if (grove_id, worktree_path) == (session.grove_id, session.worktree_path):
                    continue
                document.sessions[position] = replace(
                    session, grove_id=grove_id, worktree_path=worktree_path
                )
                moved += 1
            if moved:
                self._write_unlocked(document)
                logger.debug("Relocated %d session(s)", moved)
            return moved

    def cleanup_stale_sessions(
        self,
        threshold_minutes: int = DEFAULT_STALE_THRESHOLD_MINUTES,
    ) -> int:
        """
        Remove terminal sessions whose last update is older than the threshold.

        Running sessions that are not finished are kept regardless of age.
        Records with an unparseable last_update count as stale. The document
        is only written when something was removed.

        Returns:
            Number of sessions removed
        """
        cutoff = utc_now() - timedelta(minutes=threshold_minutes)

        def _is_stale(session: AgentSession) -> bool:
            if session.is_running and session.status != SessionStatus.FINISHED:
                return False
            updated_at = parse_timestamp(session.last_update)
            return updated_at is None or updated_at < cutoff

        with self._locked():
            document = self.read()
            remaining = [s for s in document.sessions if not _is_stale(s)]
            removed = len(document.sessions) - len(remaining)
            if removed > 0:
                document.sessions = remaining
                self._write_unlocked(document)
                logger.info("Removed %d stale session(s)", removed)
            return removed

    # =========================================================================
    # Internals
    # =========================================================================

    def _prepare(self, session: AgentSession) -> AgentSession:
        if not session.last_update:
            session = replace(session, last_update=now_timestamp())
        return session.normalized()

    def _write_unlocked(self, document: SessionsDocument) -> None:
        # Caller must hold _locked().
        document.last_updated = now_timestamp()
        payload = json.dumps(document.to_dict(), indent=2, ensure_ascii=False) + "\n"
        tmp_name: str | None = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self._path.parent,
                prefix=f".{self._path.name}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                tmp_name = handle.name
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self._path)
            tmp_name = None
        except OSError as exc:
            if self._silent_write_errors:
                logger.debug("Ignoring session store write failure: %s", exc)
                return
            logger.error("Failed to write session store %s: %s", self._path, exc)
            raise StoreWriteError(f"Could not write {self._path}: {exc}") from exc
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except FileNotFoundError:
                    pass

    @contextmanager
    def _locked(self) -> Iterator[None]:
        # Thread mutex first, then the cross-process file lock. The file lock
        # is only taken at the outermost level: flock on a second descriptor
        # in the same process would block against ourselves.
        with self._mutex:
            if self._lock_depth > 0:
                self._lock_depth += 1
                try:
                    yield
                finally:
                    self._lock_depth -= 1
                return

            handle = self._open_lock_file()
            self._lock_depth = 1
            try:
                if handle is not None:
                    _lock_file(handle)
                yield
            finally:
                self._lock_depth = 0
                if handle is not None:
                    try:
                        _unlock_file(handle)
                    finally:
                        handle.close()

    def _open_lock_file(self):
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            return self.lock_path.open("a+", encoding="utf-8")
        except OSError as exc:
            if self._silent_write_errors:
                logger.debug("Proceeding without store file lock: %s", exc)
                return None
            logger.error("Could not open session store lock %s: %s", self.lock_path, exc)
            raise StoreWriteError(f"Could not lock {self._path}: {exc}") from exc


def _lock_file(handle) -> None:
    # Acquire an exclusive lock for the file handle.
    if fcntl is not None:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        return
    if msvcrt is not None:  # pragma: no cover - platform-specific
        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_LOCK, 1)
        return
    raise RuntimeError("File locking is not supported on this platform.")


def _unlock_file(handle) -> None:
    # Release any lock held on the file handle.
    if fcntl is not None:
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        return
    if msvcrt is not None:  # pragma: no cover - platform-specific
        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
        return
    raise RuntimeError("File locking is not supported on this platform.")
