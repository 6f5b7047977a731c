"""
Reconciliation: re-derive session truth from agent logs and merge it into
the store.

A pass queries every available adapter (concurrently, since agent types are
independent), attaches grove/worktree identity to each detected session,
merges the result into the store one adapter at a time, re-matches every
stored session against the known groves, and finally sweeps stale terminal
sessions.

Merge precedence between the two writers:

1. Liveness always wins. A session detected as not running becomes finished,
   unless the store already has it as closed.
2. A status set by a hook stands while the session is running, until the
   agent's log shows activity newer than the hook call.
3. Otherwise the detected status replaces the stored one.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from datetime import datetime
import logging
from typing import Iterable, Optional

from .adapters.base import AdapterRegistry, AgentAdapter
from .errors import GroveError
from .sessions import (
    AgentSession,
    SessionsDocument,
    SessionStatus,
    now_timestamp,
    parse_timestamp,
    utc_now,
)
from .store import DEFAULT_STALE_THRESHOLD_MINUTES, SessionStore
from .workspaces import Workspace, resolve_location

logger = logging.getLogger("grove")


@dataclass(frozen=True)
class ReconcileReport:
    """
    Summary of one reconciliation pass.

    Attributes:
        added: Sessions seen for the first time
        updated: Existing sessions refreshed from detection
        removed: Stale sessions swept from the store
        errors: Per-adapter failures, formatted as "<agent>: <message>"
        timestamp: When the pass finished
    """

    added: int = 0
    updated: int = 0
    removed: int = 0
    errors: tuple[str, ...] = ()
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "added": self.added,
            "updated": self.updated,
            "removed": self.removed,
            "errors": list(self.errors),
            "timestamp": self.timestamp.isoformat(),
        }


def _is_newer(candidate: Optional[str], reference: Optional[str]) -> bool:
    candidate_ts = parse_timestamp(candidate)
    if candidate_ts is None:
        return False
    reference_ts = parse_timestamp(reference)
    return reference_ts is None or candidate_ts > reference_ts


def merge_detected(
    existing: Optional[AgentSession],
    detected: AgentSession,
) -> AgentSession:
    """Combine a freshly detected session with its stored record."""
    now = now_timestamp()
    if existing is None:
        return replace(detected, last_update=now).normalized()

    metadata = {**existing.metadata}
    metadata.update({k: v for k, v in detected.metadata.items() if v is not None})
    merged = replace(detected, metadata=metadata, last_update=now)

    if not detected.is_running:
        if existing.status == SessionStatus.CLOSED:
            return replace(
                merged,
                status=SessionStatus.CLOSED,
                status_source=existing.status_source,
                observed_at=existing.observed_at,
            )
        return replace(merged, status=SessionStatus.FINISHED, status_source="detection")

    hook_status_stands = existing.status_source == "hook" and not _is_newer(
        detected.observed_at, existing.observed_at
    )
    if hook_status_stands:
        return replace(
            merged,
            status=existing.status,
            status_source="hook",
            observed_at=existing.observed_at,
        ).normalized()

    return merged.normalized()


def _locate(
    session: AgentSession,
    workspaces: list[Workspace],
) -> tuple[Optional[str], Optional[str]]:
    workspace, worktree = resolve_location(session.workspace_path, workspaces)
    return (
        workspace.id if workspace else None,
        worktree.worktree_path if worktree else None,
    )


def _attach_location(session: AgentSession, workspaces: list[Workspace]) -> AgentSession:
    grove_id, worktree_path = _locate(session, workspaces)
    return replace(session, grove_id=grove_id, worktree_path=worktree_path)


def _as_registry(adapters: AdapterRegistry | Iterable[AgentAdapter]) -> AdapterRegistry:
    if isinstance(adapters, AdapterRegistry):
        return adapters
    registry = AdapterRegistry()
    for adapter in adapters:
        registry.register(adapter)
    return registry


def _error_text(adapter: AgentAdapter, exc: BaseException) -> str:
    return f"{adapter.agent_type.value}: {str(exc) or type(exc).__name__}"


def run_reconciliation(
    store: SessionStore,
    adapters: AdapterRegistry | Iterable[AgentAdapter],
    known_workspaces: Iterable[Workspace],
    *,
    stale_threshold_minutes: int = DEFAULT_STALE_THRESHOLD_MINUTES,
    timeout: float | None = None,
) -> ReconcileReport:
    """
    Run one full reconciliation pass.

    Args:
        store: Session store to merge into
        adapters: Adapters (or a registry) to query; unavailable ones are skipped
        known_workspaces: Groves used to attach grove/worktree identity
        stale_threshold_minutes: Age after which terminal sessions are swept
        timeout: Seconds allowed for the detection phase; None waits forever

    Returns:
        ReconcileReport with added/updated/removed counts and errors
    """
    workspaces = list(known_workspaces)
    candidates = _as_registry(adapters).get_available()

    added = 0
    updated = 0
    removed = 0
    errors: list[str] = []

    detections: dict[int, list[AgentSession]] = {}
    if candidates:
        executor = ThreadPoolExecutor(
            max_workers=len(candidates),
            thread_name_prefix="grove-detect",
        )
        futures: dict[Future, int] = {
            executor.submit(adapter.detect_sessions): position
            for position, adapter in enumerate(candidates)
        }
        done, pending = wait(futures, timeout=timeout)
        # Don't block on detections that blew the deadline.
        executor.shutdown(wait=False, cancel_futures=True)

        for future in pending:
            adapter = candidates[futures[future]]
            errors.append(f"{adapter.agent_type.value}: detection timed out")
        for future in done:
            adapter = candidates[futures[future]]
            try:
                detections[futures[future]] = future.result()
            except Exception as exc:
                logger.warning("Session detection failed for %s: %s", adapter.agent_type.value, exc)
                errors.append(_error_text(adapter, exc))

    # Store writes are serialized, in adapter order.
    for position, adapter in enumerate(candidates):
        detected = detections.get(position)
        if detected is None:
            continue
        located = [_attach_location(session, workspaces) for session in detected]
        counts = {"added": 0, "updated": 0}

        def _merge(document: SessionsDocument) -> None:
            by_id = {s.session_id: i for i, s in enumerate(document.sessions)}
            for session in located:
                slot = by_id.get(session.session_id)
                if slot is None:
                    by_id[session.session_id] = len(document.sessions)
                    document.sessions.append(merge_detected(None, session))
                    counts["added"] += 1
                else:
                    document.sessions[slot] = merge_detected(document.sessions[slot], session)
                    counts["updated"] += 1

        try:
            store.update(_merge)
        except GroveError as exc:
            errors.append(_error_text(adapter, exc))
            continue
        added += counts["added"]
        updated += counts["updated"]

    try:
        store.relocate_sessions(lambda session: _locate(session, workspaces))
    except GroveError as exc:
        errors.append(f"store: {exc}")

    try:
        removed = store.cleanup_stale_sessions(stale_threshold_minutes)
    except GroveError as exc:
        errors.append(f"store: {exc}")

    report = ReconcileReport(
        added=added,
        updated=updated,
        removed=removed,
        errors=tuple(errors),
    )
    logger.info(
        "Reconciliation complete: added=%d, updated=%d, removed=%d, errors=%d",
        report.added,
        report.updated,
        report.removed,
        len(report.errors),
    )
    return report
