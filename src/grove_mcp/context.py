"""Application context shared by MCP tools, resources and the CLI."""

from dataclasses import dataclass, field
from typing import Callable, Iterable

from grove.adapters import AdapterRegistry, default_registry
from grove.config import GroveConfig, load_effective_config
from grove.hooks import SessionHooks
from grove.paths import sessions_path
from grove.poller import SessionPoller
from grove.reconcile import ReconcileReport, run_reconciliation
from grove.store import SessionStore
from grove.workspaces import Workspace, load_workspaces


@dataclass
class AppContext:
    """
    Everything a tool or CLI command needs, built once per invocation.

    The store is an explicit object constructed from the configured path;
    there is no process-wide registry.
    """

    config: GroveConfig
    store: SessionStore
    adapters: AdapterRegistry
    workspace_loader: Callable[[], Iterable[Workspace]] = field(default=load_workspaces)

    def reconcile(self) -> ReconcileReport:
        return run_reconciliation(
            self.store,
            self.adapters,
            self.workspace_loader(),
            stale_threshold_minutes=self.config.sessions.stale_threshold_minutes,
            timeout=self.config.sessions.detect_timeout_seconds,
        )

    def hooks(self) -> SessionHooks:
        return SessionHooks(self.store, self.workspace_loader)

    def poller(self) -> SessionPoller:
        return SessionPoller(
            self.store,
            self.adapters,
            self.workspace_loader,
            interval=self.config.sessions.poll_interval_seconds,
            stale_threshold_minutes=self.config.sessions.stale_threshold_minutes,
            detect_timeout=self.config.sessions.detect_timeout_seconds,
        )


def build_app_context(config: GroveConfig | None = None) -> AppContext:
    """Build the application context from the effective config."""
    config = config or load_effective_config()
    store = SessionStore(
        sessions_path(),
        create_on_first_read=config.sessions.create_on_first_read,
        silent_write_errors=config.sessions.silent_write_errors,
    )
    return AppContext(
        config=config,
        store=store,
        adapters=default_registry(config.agents.claude_dir),
    )
