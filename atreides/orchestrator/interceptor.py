"""
Atreides - Tool Execution Interceptor

Wraps every tool call. Before execution it starts a duration tracker and
asks the validation pipeline for a decision; after execution it records
the outcome in the session's tool history.

Trackers are held per session and swept on session end, so a host that
never fires the after-hook cannot leak them.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from atreides.security import CommandValidationPipeline, ValidationResult
from atreides.session import SessionStore
from atreides.state import ToolExecutionRecord

logger = logging.getLogger(__name__)

EXIT_CODE_KEYS = ("exitCode", "exit_code", "returncode")


@dataclass
class InFlightCall:
    """A tool call whose after-hook has not fired yet."""

    tool: str
    tool_input: Any
    started_at: float = field(default_factory=time.perf_counter)


@dataclass
class CompletedCall:
    """What after() hands to downstream trackers."""

    record: ToolExecutionRecord
    tool_input: Any = None


@dataclass
class ToolOutcome:
    success: bool
    error: str | None = None


@dataclass
class ToolStats:
    """Aggregates over a session's tool history."""

    total_calls: int = 0
    success_count: int = 0
    failure_count: int = 0
    avg_duration_ms: float = 0.0
    tool_breakdown: dict[str, int] = field(default_factory=dict)


def extract_result_status(output: Any) -> ToolOutcome:
    """
    Decide whether a tool result is a success.

    Checks, in order: an error string, error=True, a boolean success
    flag, then a non-zero integer exit code. Anything else is a success.
    """
    if not isinstance(output, dict):
        return ToolOutcome(success=True)

    error = output.get("error")
    if isinstance(error, str) and error:
        return ToolOutcome(success=False, error=error)
    if error is True:
        return ToolOutcome(success=False, error="Unknown error")
    if isinstance(error, dict) and error:
        return ToolOutcome(success=False, error=str(error.get("message") or "Unknown error"))

    success = output.get("success")
    if isinstance(success, bool):
        if success:
            return ToolOutcome(success=True)
        return ToolOutcome(success=False, error=str(output.get("message") or "Operation failed"))

    for key in EXIT_CODE_KEYS:
        code = output.get(key)
        if isinstance(code, int) and not isinstance(code, bool) and code != 0:
            return ToolOutcome(success=False, error=f"Exit code: {code}")

    return ToolOutcome(success=True)


class ToolExecutionInterceptor:
    """Before/after wrapper around each tool call."""

    def __init__(self, store: SessionStore, pipeline: CommandValidationPipeline):
        self.store = store
        self.pipeline = pipeline
        self._trackers: dict[str, dict[str, InFlightCall]] = {}

    def before(
        self,
        tool: str,
        tool_input: Any,
        session_id: str,
        validate: bool = True,
    ) -> ValidationResult:
        """
        Start timing a tool call and validate its input.

        A second before() for the same session and tool replaces the
        earlier tracker.

        Returns:
            Validation decision; deny if validation itself raises
        """
        self._trackers.setdefault(session_id, {})[tool] = InFlightCall(tool=tool, tool_input=tool_input)
        self.store.update_activity(session_id)

        if not validate:
            return ValidationResult.allow()

        try:
            return self.pipeline.validate_tool_input(tool, tool_input, session_id)
        except Exception as e:
            logger.error(f"Validation raised for {tool}, denying: {e}")
            return ValidationResult.deny("Validation error occurred")

    def after(self, tool: str, output: Any, session_id: str) -> CompletedCall | None:
        """
        Record a finished tool call in the session history.

        Never raises.

        Returns:
            The recorded call, or None if recording failed
        """
        try:
            call = self._trackers.get(session_id, {}).pop(tool, None)
            duration_ms = (time.perf_counter() - call.started_at) * 1000 if call else None

            outcome = extract_result_status(output)
            record = ToolExecutionRecord(
                tool=tool,
                success=outcome.success,
                duration_ms=duration_ms,
                error=outcome.error,
            )
            self.store.add_tool_execution(session_id, record)
            if not outcome.success:
                logger.debug(f"Tool {tool} failed in {session_id}: {outcome.error}")
            return CompletedCall(record=record, tool_input=call.tool_input if call else None)
        except Exception as e:
            logger.error(f"Failed to record {tool} execution: {e}")
            return None

    def in_flight(self, session_id: str) -> list[str]:
        """Tools whose after-hook has not fired for this session."""
        return list(self._trackers.get(session_id, {}))

    def clear_session(self, session_id: str) -> int:
        """
        Drop every tracker for a session.

        Returns:
            Number of dangling trackers removed
        """
        return len(self._trackers.pop(session_id, {}))

    def clear(self) -> None:
        self._trackers.clear()

    def get_tool_stats(self, session_id: str) -> ToolStats:
        """Summarize a session's tool history."""
        state = self.store.get_or_none(session_id)
        if state is None or not state.tool_history:
            return ToolStats()

        history = state.tool_history
        durations = [r.duration_ms for r in history if r.duration_ms is not None]
        breakdown: dict[str, int] = {}
        for record in history:
            breakdown[record.tool] = breakdown.get(record.tool, 0) + 1

        success_count = sum(1 for r in history if r.success)
        return ToolStats(
            total_calls=len(history),
            success_count=success_count,
            failure_count=len(history) - success_count,
            avg_duration_ms=sum(durations) / len(durations) if durations else 0.0,
            tool_breakdown=breakdown,
        )
