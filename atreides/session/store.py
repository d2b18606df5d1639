"""
Atreides - Session Store

Keyed container of SessionState. Every other component reads and mutates
sessions through here. Mutation helpers are no-ops for unknown sessions so
telemetry-style callers never need an existence check first.

Access is single-threaded: the host fires one hook at a time.
"""

import logging
from typing import Any

from atreides.config import AtreidesConfig
from atreides.exceptions import ConfigurationMissingError
from atreides.state import (
    SessionState,
    ToolExecutionRecord,
    WorkflowPhase,
    WorkflowState,
)

logger = logging.getLogger(__name__)


class SessionStore:
    """In-memory map of session id to SessionState."""

    def __init__(self, default_config: AtreidesConfig | None = None):
        """
        Initialize the store.

        Args:
            default_config: Config used when get() has to create a session
        """
        self.default_config = default_config
        self._sessions: dict[str, SessionState] = {}

    # =========================================================================
    # Lookup and lifecycle
    # =========================================================================

    def get(self, session_id: str, config: AtreidesConfig | None = None) -> SessionState:
        """
        Get a session, creating it on first access.

        Args:
            session_id: Session identifier
            config: Config for a new session (defaults to default_config)

        Returns:
            The existing or newly created SessionState

        Raises:
            ConfigurationMissingError: If the session must be created and
                no config is available
        """
        state = self._sessions.get(session_id)
        if state is not None:
            return state

        config = config or self.default_config
        if config is None:
            raise ConfigurationMissingError(session_id)

        state = SessionState(session_id=session_id, config=config)
        self._sessions[session_id] = state
        logger.debug(f"Session initialized: {session_id}")
        return state

    def get_or_none(self, session_id: str) -> SessionState | None:
        """Get a session without creating it."""
        return self._sessions.get(session_id)

    def set(self, session_id: str, state: SessionState) -> None:
        """Replace the state stored for a session."""
        self._sessions[session_id] = state

    def delete(self, session_id: str) -> bool:
        """
        Remove a session. Idempotent.

        Returns:
            True if the session existed
        """
        existed = self._sessions.pop(session_id, None) is not None
        if existed:
            logger.debug(f"Session deleted: {session_id}")
        return existed

    def has(self, session_id: str) -> bool:
        """Check whether a session exists."""
        return session_id in self._sessions

    def all_sessions(self) -> dict[str, SessionState]:
        """Get a shallow copy of all sessions."""
        return dict(self._sessions)

    def count(self) -> int:
        """Number of active sessions."""
        return len(self._sessions)

    def clear(self) -> None:
        """Drop every session."""
        self._sessions.clear()

    # =========================================================================
    # Mutation helpers (no-ops for unknown sessions)
    # =========================================================================

    def update_activity(self, session_id: str) -> None:
        if state := self._sessions.get(session_id):
            state.touch()

    def add_tool_execution(self, session_id: str, record: ToolExecutionRecord) -> None:
        if state := self._sessions.get(session_id):
            state.add_tool_execution(record)

    def increment_error_count(self, session_id: str) -> int:
        """
        Add one strike.

        Returns:
            The new count, or 0 if the session does not exist
        """
        state = self._sessions.get(session_id)
        if state is None:
            return 0
        state.error_count += 1
        state.touch()
        return state.error_count

    def reset_error_count(self, session_id: str) -> None:
        if state := self._sessions.get(session_id):
            state.error_count = 0
            state.touch()

    def update_todos(self, session_id: str, total: int, completed: int) -> None:
        if state := self._sessions.get(session_id):
            state.todo_count = total
            state.todos_completed = completed
            state.touch()

    def set_phase(self, session_id: str, phase: WorkflowPhase) -> None:
        """Set the phase directly, bypassing the transition table.

        Only snapshot restoration uses this; live phase changes go through
        WorkflowState.transition_to().
        """
        if state := self._sessions.get(session_id):
            state.workflow.current_phase = phase
            state.touch()

    def get_workflow(self, session_id: str) -> WorkflowState | None:
        state = self._sessions.get(session_id)
        return state.workflow if state else None

    # =========================================================================
    # Scratch metadata
    # =========================================================================

    def set_metadata(self, session_id: str, key: str, value: Any) -> None:
        """Set a metadata value; None removes the key."""
        state = self._sessions.get(session_id)
        if state is None:
            return
        if value is None:
            state.metadata.pop(key, None)
        else:
            state.metadata[key] = value
        state.touch()

    def get_metadata(self, session_id: str, key: str, default: Any = None) -> Any:
        state = self._sessions.get(session_id)
        if state is None:
            return default
        return state.metadata.get(key, default)
