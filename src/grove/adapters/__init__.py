"""Agent adapters: per-agent session discovery."""

from pathlib import Path

from .base import AdapterRegistry, AgentAdapter
from .claude import ClaudeAdapter
from .process import ProcessSnapshot, ProcessTable

__all__ = [
    "AdapterRegistry",
    "AgentAdapter",
    "ClaudeAdapter",
    "ProcessSnapshot",
    "ProcessTable",
    "default_registry",
]


def default_registry(claude_dir: str | None = None) -> AdapterRegistry:
    """Registry holding every built-in adapter."""
    registry = AdapterRegistry()
    registry.register(ClaudeAdapter(Path(claude_dir).expanduser() if claude_dir else None))
    return registry
