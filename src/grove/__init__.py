"""Session registry and reconciliation engine for grove workspaces."""

__version__ = "0.1.0"
