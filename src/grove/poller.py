"""Background reconciliation for long-lived processes (e.g. the HTTP server)."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable, Optional

from .adapters.base import AdapterRegistry
from .reconcile import ReconcileReport, run_reconciliation
from .store import DEFAULT_STALE_THRESHOLD_MINUTES, SessionStore
from .workspaces import Workspace, load_workspaces

logger = logging.getLogger("grove")

DEFAULT_INTERVAL_SECONDS = 5.0


class SessionPoller:
    """
    Runs reconciliation passes on a daemon thread.

    Workspaces are reloaded every pass so newly registered groves are picked
    up without a restart. A failing pass is logged and the next one runs on
    schedule.
    """

    def __init__(
        self,
        store: SessionStore,
        adapters: AdapterRegistry,
        workspace_loader: Callable[[], Iterable[Workspace]] = load_workspaces,
        *,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        stale_threshold_minutes: int = DEFAULT_STALE_THRESHOLD_MINUTES,
        detect_timeout: float | None = None,
    ):
        self.store = store
        self.adapters = adapters
        self.workspace_loader = workspace_loader
        self.interval = interval
        self.stale_threshold_minutes = stale_threshold_minutes
        self.detect_timeout = detect_timeout
        self.last_report: Optional[ReconcileReport] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="grove-poller", daemon=True)
        self._thread.start()
        logger.info("Session poller started (interval=%.1fs)", self.interval)

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Session poller stopped")

    def run_once(self) -> ReconcileReport:
        report = run_reconciliation(
            self.store,
            self.adapters,
            self.workspace_loader(),
            stale_threshold_minutes=self.stale_threshold_minutes,
            timeout=self.detect_timeout,
        )
        self.last_report = report
        return report

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                report = self.run_once()
                if report.errors:
                    logger.warning("Reconciliation errors: %s", "; ".join(report.errors))
            except Exception:
                logger.exception("Reconciliation pass failed")
            self._stop.wait(self.interval)
