"""
Atreides Runtime - Host Hook Surface

One AtreidesRuntime owns a SessionStore and every tracker built on it. The
host calls its hooks one at a time:

    before_tool         -> validate and start timing (fails closed)
    after_tool          -> history, strikes, phase, todo sync (fails open)
    on_stop             -> pending-todo gate (fails open)
    on_compact          -> append the preserved-state block to a summary
    on_chat_params      -> pick the model for the session's think mode
    on_session_end      -> sweep every per-session structure

Notable events are also reported through the NotificationManager, whose
optional sink is supplied by the host.

Separate runtimes share nothing, so tests and multi-tenant hosts can run
several side by side.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from atreides.config import AtreidesConfig, load_config
from atreides.exceptions import HookExecutionError
from atreides.logging import log_session_event, set_session_id
from atreides.orchestrator.compaction import BLOCK_START, CompactionPreservation
from atreides.orchestrator.identity import format_delegation_announcement, format_header
from atreides.orchestrator.interceptor import ToolExecutionInterceptor
from atreides.orchestrator.notifications import NotificationManager, NotificationSink
from atreides.orchestrator.recovery import (
    ESCALATION_THRESHOLD,
    ErrorRecoveryProtocol,
    RecoveryAction,
    RecoveryResult,
    extract_output_text,
    get_suggestion,
)
from atreides.orchestrator.think_mode import ThinkModeManager
from atreides.orchestrator.todos import StopDecision, TodoChanges, TodoTracker
from atreides.orchestrator.workflow import WorkflowPhaseEngine
from atreides.security import CommandValidationPipeline, ValidationAction, ValidationResult
from atreides.session import SessionStore
from atreides.state import SecurityEvent, SessionState, WorkflowPhase

logger = logging.getLogger(__name__)

# Tools whose output or input carries a structured todo list
TODO_TOOLS = {"todowrite", "todo_write", "task"}

# Tools that hand work to a subagent, and the input keys naming it
DELEGATION_TOOLS = {"task"}
AGENT_KEYS = ("subagent_type", "subagentType", "agent")

REASON_HOOK_FAILURE = "Validation error occurred"


@dataclass
class ToolDecision:
    """Answer to the before-tool hook."""

    action: ValidationAction
    reason: str | None = None
    matched_pattern: str | None = None
    message: str | None = None

    @property
    def allow(self) -> bool:
        return self.action != ValidationAction.DENY

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"action": self.action.value}
        if self.reason:
            data["reason"] = self.reason
        if self.matched_pattern:
            data["matchedPattern"] = self.matched_pattern
        if self.message:
            data["message"] = self.message
        return data

    @classmethod
    def from_result(cls, result: ValidationResult) -> "ToolDecision":
        message = None
        if result.action == ValidationAction.DENY:
            message = f"[SECURITY] {result.reason}. Pattern: {result.matched_pattern}"
        elif result.action == ValidationAction.ASK:
            message = (
                f"[SECURITY WARNING] {result.reason}. "
                f"Pattern matched: {result.matched_pattern}. Proceed with caution."
            )
        return cls(result.action, result.reason, result.matched_pattern, message)


def format_error_recovery_block(state: SessionState) -> str:
    """
    Error-recovery text for the system prompt, by strike count.

    An active escalation with a recorded message wins; otherwise strike 2+
    lists the category's recovery steps and strike 1 is a short warning.
    """
    strikes = state.error_count
    if strikes <= 0:
        return ""

    recovery = state.error_recovery
    if recovery and recovery.escalated and recovery.message:
        return recovery.message

    if strikes >= 2:
        suggestion = get_suggestion(state.last_error.category if state.last_error else None)
        steps = "\n".join(f"  {i}. {s}" for i, s in enumerate(suggestion.suggestions, start=1))
        closing = "Proceed carefully."
        if strikes == ESCALATION_THRESHOLD - 1:
            closing += " One more error will trigger Stilgar escalation."
        return (
            f"[ERROR RECOVERY - Strike {strikes}/{ESCALATION_THRESHOLD}]\n"
            f"{suggestion.message}\n\n"
            f"Suggested actions:\n{steps}\n\n"
            f"{closing}"
        )

    return f"[ERROR RECOVERY]\nConsecutive errors: {strikes}/{ESCALATION_THRESHOLD}. Proceed carefully."


def delegated_agent(tool: str, tool_input: Any) -> str | None:
    """Subagent named by a delegation tool call, or None."""
    if tool.lower() not in DELEGATION_TOOLS or not isinstance(tool_input, dict):
        return None
    for key in AGENT_KEYS:
        agent = tool_input.get(key)
        if isinstance(agent, str) and agent.strip():
            return agent.strip()
    return None


class AtreidesRuntime:
    """Owns one instance of every component and exposes the host hooks."""

    def __init__(self, config: AtreidesConfig | None = None, notify: NotificationSink | None = None):
        self.config = config or AtreidesConfig()
        self.store = SessionStore(default_config=self.config)
        self.pipeline = CommandValidationPipeline(self.config.security)
        self.interceptor = ToolExecutionInterceptor(self.store, self.pipeline)
        self.workflow = WorkflowPhaseEngine(self.store)
        self.recovery = ErrorRecoveryProtocol(self.store)
        self.todos = TodoTracker(self.store)
        self.compaction = CompactionPreservation(self.store, self.todos)
        self.notifications = NotificationManager(self.config.notifications, sink=notify)
        self.think_mode = ThinkModeManager(self.store, self.config.think_mode)

    @classmethod
    def from_project(
        cls,
        project_path: str | Path = ".",
        strict: bool = False,
        notify: NotificationSink | None = None,
    ) -> "AtreidesRuntime":
        """Build a runtime from a project's configuration file."""
        return cls(load_config(project_path, strict=strict), notify=notify)

    def _hook_failed(self, hook: str, session_id: str, exc: Exception) -> None:
        error = HookExecutionError(hook, exc)
        logger.error(str(error))
        log_session_event(
            "hook_error",
            session_id,
            detail=hook,
            error=str(exc),
            error_type=type(exc).__name__,
        )

    # =========================================================================
    # Tool hooks
    # =========================================================================

    def before_tool(self, tool: str, tool_input: Any, session_id: str) -> ToolDecision:
        """
        Validate a tool call before the host runs it.

        Deny and ask decisions are recorded as the session's last security
        event. An allowed delegation carries the "Delegating to ..."
        announcement as its message. With obfuscation detection disabled
        only timing starts. Any failure in this hook denies the call.
        """
        set_session_id(session_id)
        try:
            self.store.get(session_id)
            validate = self.config.security.enable_obfuscation_detection
            result = self.interceptor.before(tool, tool_input, session_id, validate=validate)
            decision = ToolDecision.from_result(result)

            if result.action != ValidationAction.ALLOW:
                self._record_security_event(session_id, tool, result)
            elif agent := delegated_agent(tool, tool_input):
                decision.message = format_delegation_announcement(self.config.identity, agent) or None
                logger.info(f"Delegating to {agent} in {session_id}")
            return decision
        except Exception as e:
            self._hook_failed("before_tool", session_id, e)
            return ToolDecision(
                ValidationAction.DENY,
                REASON_HOOK_FAILURE,
                message=f"[SECURITY] {REASON_HOOK_FAILURE}",
            )

    def _record_security_event(self, session_id: str, tool: str, result: ValidationResult) -> None:
        state = self.store.get_or_none(session_id)
        if state is None:
            return
        state.last_security_event = SecurityEvent(
            timestamp=datetime.now(),
            tool=tool,
            action=result.action.value,
            reason=result.reason,
            pattern=result.matched_pattern,
        )
        if result.action == ValidationAction.DENY:
            logger.warning(f"Blocked {tool} in {session_id}: {result.reason} ({result.matched_pattern})")
            self.notifications.notify_security_blocked(session_id, tool, result.reason or "")
        else:
            logger.info(f"Confirmation required for {tool} in {session_id}: {result.reason}")
            self.notifications.notify_security_warning(session_id, tool, result.reason or "")

    def after_tool(
        self,
        tool: str,
        output: Any,
        session_id: str,
        tool_input: Any = None,
    ) -> RecoveryResult | None:
        """
        Record a finished tool call. Never raises.

        Returns:
            The error-recovery outcome, or None if the hook failed
        """
        set_session_id(session_id)
        try:
            state = self.store.get(session_id)
            completed = self.interceptor.after(tool, output, session_id)
            if tool_input is None and completed is not None:
                tool_input = completed.tool_input

            result = self.recovery.check(tool, output, session_id)
            self._report_recovery(session_id, tool, output, result)
            if result.action == RecoveryAction.ESCALATED:
                if self.config.workflow.auto_escalate_on_error and state.error_recovery:
                    state.error_recovery.message = result.message

            if self.config.workflow.enable_phase_tracking:
                previous = state.phase
                current = self.workflow.update_phase(tool, session_id, tool_input)
                if current != previous and current == state.phase:
                    self.notifications.notify_phase_transition(session_id, previous.value, current.value)

            if tool.lower() in TODO_TOOLS:
                self._track_todos(session_id, output, tool_input)

            agent = delegated_agent(tool, tool_input)
            if agent and not result.error_detected:
                announcement = format_delegation_announcement(self.config.identity, agent, before=False)
                if announcement:
                    self.notifications.notify_delegation_completed(session_id, agent, announcement)
            return result
        except Exception as e:
            self._hook_failed("after_tool", session_id, e)
            return None

    def _report_recovery(self, session_id: str, tool: str, output: Any, result: RecoveryResult) -> None:
        if result.action in (RecoveryAction.LOGGED, RecoveryAction.SUGGESTED):
            if result.action == RecoveryAction.SUGGESTED:
                logger.info(f"Recovery suggestions provided for {session_id} (strike {result.strike_count})")
            error = extract_output_text(output).strip().splitlines()
            self.notifications.notify_error_strike(
                session_id, result.strike_count, tool, error[0][:200] if error else ""
            )
        elif result.action == RecoveryAction.ESCALATED and result.strike_count == ESCALATION_THRESHOLD:
            self.notifications.notify_error_escalation(session_id, result.strike_count, tool)
        elif result.action == RecoveryAction.RESET:
            self.notifications.notify_error_recovery(session_id)

    def _track_todos(self, session_id: str, output: Any, tool_input: Any) -> None:
        for source in (output, tool_input):
            if isinstance(source, dict) and isinstance(source.get("todos"), list):
                self.todos.sync_structured(session_id, source["todos"])
                return
        self.todos.detect(session_id, extract_output_text(output))

    # =========================================================================
    # Conversation hooks
    # =========================================================================

    def on_stop(self, session_id: str) -> StopDecision:
        """Refuse to stop while todos are pending. Fails open."""
        set_session_id(session_id)
        try:
            state = self.store.get_or_none(session_id)
            if state is None:
                return StopDecision(allow=True)

            if self.config.workflow.strict_todo_enforcement:
                decision = self.todos.check_pending(session_id)
                if not decision.allow:
                    pending = [todo.description for todo in self.todos.pending(session_id)]
                    logger.info(f"Stop blocked for {session_id}: {len(pending)} pending todo(s)")
                    log_session_event("stop_blocked", session_id, pending_todos=len(pending))
                    self.notifications.notify_pending_todos(session_id, pending)
                    return decision

            if self.config.workflow.enable_phase_tracking:
                if self.workflow.is_workflow_complete(session_id):
                    completed = self.todos.summary(session_id).completed
                    self.notifications.notify_workflow_complete(session_id, completed)
                elif state.phase not in (WorkflowPhase.IDLE, WorkflowPhase.VERIFICATION):
                    logger.info(f"Session {session_id} stopping in {state.phase.value} before verification")
            return StopDecision(allow=True)
        except Exception as e:
            self._hook_failed("on_stop", session_id, e)
            return StopDecision(allow=True)

    def on_compact(self, session_id: str, summary: str = "") -> str:
        """Append the session's preserved-state block to a compaction summary."""
        set_session_id(session_id)
        try:
            if not self.store.has(session_id):
                return summary
            compacted = self.compaction.inject(summary, session_id, self.config.identity.persona_name)
            if BLOCK_START in compacted[len(summary):]:
                self.notifications.notify_compaction_completed(session_id)
            return compacted
        except Exception as e:
            self._hook_failed("on_compact", session_id, e)
            return summary

    def restore_from_summary(self, session_id: str, text: str) -> bool:
        """Restore state from a block found in a compacted summary."""
        set_session_id(session_id)
        try:
            self.store.get(session_id)
            return self.compaction.restore_from_text(session_id, text)
        except Exception as e:
            self._hook_failed("restore_from_summary", session_id, e)
            return False

    def on_user_message(self, session_id: str, text: str) -> None:
        """Start the workflow on the first request, classify its intent and score its complexity."""
        set_session_id(session_id)
        try:
            state = self.store.get(session_id)
            if self.config.workflow.enable_phase_tracking and not state.workflow_started:
                self.workflow.start_workflow(session_id, text)
                state.workflow_started = True
            else:
                self.workflow.set_intent(session_id, text)
            self.think_mode.apply_auto_switch(session_id, text)
        except Exception as e:
            self._hook_failed("on_user_message", session_id, e)

    def on_chat_params(self, session_id: str, params: dict[str, Any]) -> dict[str, Any]:
        """Swap in the model for the session's think mode. Returns params unchanged on failure."""
        set_session_id(session_id)
        try:
            return self.think_mode.chat_params(session_id, params)
        except Exception as e:
            self._hook_failed("on_chat_params", session_id, e)
            return params

    def on_assistant_message(self, session_id: str, text: str) -> TodoChanges:
        """Pick up todo checkboxes and completion phrases from assistant text."""
        set_session_id(session_id)
        try:
            self.store.get(session_id)
            return self.todos.detect(session_id, text)
        except Exception as e:
            self._hook_failed("on_assistant_message", session_id, e)
            return TodoChanges()

    def transform_system_prompt(self, session_id: str, system: str = "") -> str:
        """
        Build the system prompt for the next model turn.

        Starts the workflow on first use, then adds the identity header,
        phase guidance and any error-recovery block. Returns the prompt
        unchanged if anything fails.
        """
        set_session_id(session_id)
        try:
            state = self.store.get_or_none(session_id)
            phase_tracking = self.config.workflow.enable_phase_tracking

            if state and phase_tracking and not state.workflow_started and state.phase == WorkflowPhase.IDLE:
                self.workflow.start_workflow(session_id)
                state.workflow_started = True
                logger.debug(f"Workflow started on first system transform: {session_id}")

            parts = [format_header(self.config.identity), system]
            if state and phase_tracking and state.phase != WorkflowPhase.IDLE:
                parts.append(self.workflow.guidance_for(session_id))
            if state:
                parts.append(format_error_recovery_block(state))
            return "\n\n".join(part for part in parts if part)
        except Exception as e:
            self._hook_failed("transform_system_prompt", session_id, e)
            return system

    # =========================================================================
    # Session lifecycle
    # =========================================================================

    def on_session_start(self, session_id: str) -> SessionState:
        set_session_id(session_id)
        state = self.store.get(session_id)
        logger.info(f"Session initialized: {session_id}")
        log_session_event("start", session_id)
        self.notifications.notify_session_started(session_id, self.config.identity.persona_name)
        return state

    def on_session_end(self, session_id: str) -> None:
        """Drop the session and every per-session structure built for it."""
        set_session_id(session_id)
        try:
            existed = self.store.delete(session_id)
            self.todos.clear_session(session_id)
            self.notifications.clear_session(session_id)
            self.think_mode.clear_session(session_id)
            dangling = self.interceptor.clear_session(session_id)
            if dangling:
                logger.debug(f"Swept {dangling} in-flight tool tracker(s) for {session_id}")
            if existed:
                logger.info(f"Session cleaned up: {session_id}")
                log_session_event("end", session_id, detail=f"{dangling} dangling tracker(s)")
        except Exception as e:
            self._hook_failed("on_session_end", session_id, e)

    def on_event(self, event_type: str, session_id: str) -> None:
        """Dispatch a host lifecycle event."""
        if event_type == "session.created":
            self.on_session_start(session_id)
        elif event_type == "session.deleted":
            self.on_session_end(session_id)
        elif event_type == "session.idle":
            self.store.update_activity(session_id)
        else:
            logger.debug(f"Unhandled event type: {event_type} ({session_id})")

    # =========================================================================
    # Introspection
    # =========================================================================

    def session_summary(self, session_id: str) -> dict[str, Any] | None:
        """Stats for one session plus its todo counts, or None if unknown."""
        state = self.store.get_or_none(session_id)
        if state is None:
            return None
        stats = state.get_stats()
        todos = self.todos.summary(session_id)
        stats["pending_todos"] = todos.pending
        stats["strike_count"] = state.error_count
        stats["think_mode"] = self.think_mode.get_state(session_id).value
        stats["notifications"] = len(self.notifications.get_session_history(session_id))
        return stats
