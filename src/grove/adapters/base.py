"""
Agent adapter protocol.

Each supported agent tool gets an adapter that knows where the tool keeps its
session logs, how to parse them, and how to tell whether a session's process
is still alive. The reconciliation driver only talks to this interface.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol, runtime_checkable

from ..sessions import AgentSession, AgentType, SessionStatus

logger = logging.getLogger("grove")


@runtime_checkable
class AgentAdapter(Protocol):
    """Protocol for agent-specific session detection."""

    agent_type: AgentType

    def is_available(self) -> bool:
        """Check whether the agent is installed (its data directory exists)."""
        ...

    def detect_sessions(self) -> list[AgentSession]:
        """Detect every session the agent has logged, with liveness and status."""
        ...

    def verify_session(self, session_id: str) -> Optional[AgentSession]:
        """Re-detect a single session; None if it is no longer found."""
        ...

    def get_session_status(self, session_id: str) -> Optional[SessionStatus]:
        """Current status of a single session; None if it is not found."""
        ...


class AdapterRegistry:
    """Adapters keyed by agent type, kept in registration order."""

    def __init__(self) -> None:
        self._adapters: dict[AgentType, AgentAdapter] = {}

    def register(self, adapter: AgentAdapter) -> None:
        """Register an adapter, replacing any previous one for the same agent type."""
        self._adapters[adapter.agent_type] = adapter

    def get(self, agent_type: AgentType) -> Optional[AgentAdapter]:
        return self._adapters.get(agent_type)

    def get_all(self) -> list[AgentAdapter]:
        return list(self._adapters.values())

    def get_available(self) -> list[AgentAdapter]:
        """Adapters whose agent is installed. A failing check counts as unavailable."""
        available: list[AgentAdapter] = []
        for adapter in self._adapters.values():
            try:
                if adapter.is_available():
                    available.append(adapter)
            except OSError as exc:
                logger.warning("Availability check failed for %s: %s", adapter.agent_type.value, exc)
        return available

    def __len__(self) -> int:
        return len(self._adapters)
