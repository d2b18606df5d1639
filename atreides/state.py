"""
Atreides - Session State and Workflow Phase Machine

Defines the per-session record owned by the SessionStore and the fixed
workflow transition table. Phases only move along VALID_TRANSITIONS;
anything else is rejected without raising.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from atreides.config import AtreidesConfig

# Oldest entries are evicted past this many tool executions
MAX_TOOL_HISTORY = 100


class WorkflowPhase(Enum):
    """
    Workflow phases of a session.

    Phase transitions:
    IDLE -> INTENT (workflow started)
    INTENT -> ASSESSMENT | EXPLORATION
    ASSESSMENT -> EXPLORATION | IMPLEMENTATION
    EXPLORATION -> IMPLEMENTATION | ASSESSMENT
    IMPLEMENTATION -> VERIFICATION | EXPLORATION
    VERIFICATION -> INTENT | IMPLEMENTATION | IDLE (completed)
    """

    IDLE = "idle"
    INTENT = "intent"
    ASSESSMENT = "assessment"
    EXPLORATION = "exploration"
    IMPLEMENTATION = "implementation"
    VERIFICATION = "verification"


class IntentType(Enum):
    """Categories produced by free-text intent classification."""

    FEATURE = "feature"
    BUGFIX = "bugfix"
    REFACTOR = "refactor"
    EXPLORATION = "exploration"
    DOCUMENTATION = "documentation"
    TEST = "test"
    CONFIG = "config"
    UNKNOWN = "unknown"


PHASE_ORDER: list[WorkflowPhase] = list(WorkflowPhase)

# Phases in which an unrecognized shell command still counts as exploration
EARLY_PHASES = {WorkflowPhase.IDLE, WorkflowPhase.INTENT, WorkflowPhase.ASSESSMENT}

VALID_TRANSITIONS: dict[WorkflowPhase, set[WorkflowPhase]] = {
    WorkflowPhase.IDLE: {WorkflowPhase.INTENT},
    WorkflowPhase.INTENT: {WorkflowPhase.ASSESSMENT, WorkflowPhase.EXPLORATION},
    WorkflowPhase.ASSESSMENT: {WorkflowPhase.EXPLORATION, WorkflowPhase.IMPLEMENTATION},
    WorkflowPhase.EXPLORATION: {WorkflowPhase.IMPLEMENTATION, WorkflowPhase.ASSESSMENT},
    WorkflowPhase.IMPLEMENTATION: {WorkflowPhase.VERIFICATION, WorkflowPhase.EXPLORATION},
    WorkflowPhase.VERIFICATION: {
        WorkflowPhase.INTENT,
        WorkflowPhase.IMPLEMENTATION,
        WorkflowPhase.IDLE,
    },
}


def parse_phase(value: str | None, default: WorkflowPhase = WorkflowPhase.IDLE) -> WorkflowPhase:
    """Map a phase name to WorkflowPhase, falling back to default."""
    if not value:
        return default
    try:
        return WorkflowPhase(value.strip().lower())
    except ValueError:
        return default


def parse_intent(value: str | None) -> IntentType | None:
    """Map an intent name to IntentType, or None when unrecognized."""
    if not value:
        return None
    try:
        return IntentType(value.strip().lower())
    except ValueError:
        return None


@dataclass
class PhaseTransition:
    """One accepted phase change."""

    from_phase: WorkflowPhase
    to_phase: WorkflowPhase
    timestamp: datetime = field(default_factory=datetime.now)
    triggered_by: str | None = None
    reason: str | None = None


@dataclass
class WorkflowState:
    """Phase machine state for one session."""

    current_phase: WorkflowPhase = WorkflowPhase.IDLE
    phase_history: list[PhaseTransition] = field(default_factory=list)
    intent: IntentType | None = None
    started_at: datetime = field(default_factory=datetime.now)
    completed: bool = False

    def can_transition_to(self, new_phase: WorkflowPhase) -> bool:
        """Check if transition to new_phase is valid from the current phase."""
        return new_phase in VALID_TRANSITIONS.get(self.current_phase, set())

    def transition_to(
        self,
        new_phase: WorkflowPhase,
        triggered_by: str | None = None,
        reason: str | None = None,
    ) -> bool:
        """
        Attempt to transition to a new phase.

        Args:
            new_phase: The target phase
            triggered_by: Tool or event that caused the transition
            reason: Optional human-readable reason

        Returns:
            True if transition was valid and performed, False otherwise
        """
        if not self.can_transition_to(new_phase):
            return False

        previous = self.current_phase
        self.phase_history.append(
            PhaseTransition(
                from_phase=previous,
                to_phase=new_phase,
                triggered_by=triggered_by,
                reason=reason,
            )
        )
        self.current_phase = new_phase
        if previous == WorkflowPhase.VERIFICATION and new_phase == WorkflowPhase.IDLE:
            self.completed = True
        return True

    def require_transition(self, new_phase: WorkflowPhase, triggered_by: str | None = None) -> None:
        """
        Transition to a new phase, raising an exception if invalid.

        Args:
            new_phase: The target phase
            triggered_by: Tool or event that caused the transition

        Raises:
            StateTransitionError: If the transition is not valid
        """
        from atreides.exceptions import StateTransitionError

        if not self.transition_to(new_phase, triggered_by=triggered_by):
            valid_targets = VALID_TRANSITIONS.get(self.current_phase, set())
            valid_names = ", ".join(sorted(p.value for p in valid_targets)) or "none"
            raise StateTransitionError(
                f"Invalid phase transition: {self.current_phase.value} -> {new_phase.value}. "
                f"Valid transitions from {self.current_phase.value}: {valid_names}",
                from_phase=self.current_phase.value,
                to_phase=new_phase.value,
            )


@dataclass
class ToolExecutionRecord:
    """One completed tool execution."""

    tool: str
    timestamp: datetime = field(default_factory=datetime.now)
    success: bool = True
    duration_ms: float | None = None
    error: str | None = None


@dataclass
class ErrorRecoveryState:
    """Escalation record; kept after resolution for audit."""

    escalated: bool = False
    escalated_at: datetime | None = None
    triggering_tool: str | None = None
    strike_count: int = 0
    resolved_at: datetime | None = None
    # Escalation guidance surfaced in the system prompt (auto-escalate only)
    message: str | None = None


@dataclass
class LastErrorInfo:
    """Most recent detected failure."""

    timestamp: datetime
    tool: str
    output: str
    category: str


@dataclass
class SecurityEvent:
    """Most recent denied or flagged tool call."""

    timestamp: datetime
    tool: str
    action: str
    reason: str | None = None
    pattern: str | None = None


@dataclass
class SessionState:
    """
    State maintained for one active session.

    Component-owned records (error recovery, last error, security event)
    are typed fields; metadata is left for free-form host scratch data.
    """

    session_id: str
    config: AtreidesConfig = field(default_factory=AtreidesConfig)
    created_at: datetime = field(default_factory=datetime.now)
    last_activity_at: datetime = field(default_factory=datetime.now)
    workflow: WorkflowState = field(default_factory=WorkflowState)

    # Error tracking
    error_count: int = 0
    error_recovery: ErrorRecoveryState | None = None
    last_error: LastErrorInfo | None = None

    tool_history: list[ToolExecutionRecord] = field(default_factory=list)

    # Mirrors of TodoTracker counts
    todo_count: int = 0
    todos_completed: int = 0

    last_security_event: SecurityEvent | None = None
    workflow_started: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def phase(self) -> WorkflowPhase:
        """Current workflow phase."""
        return self.workflow.current_phase

    def touch(self) -> None:
        """Record activity on the session."""
        self.last_activity_at = datetime.now()

    def add_tool_execution(self, record: ToolExecutionRecord) -> None:
        """Append a tool execution, evicting the oldest past MAX_TOOL_HISTORY."""
        self.tool_history.append(record)
        if len(self.tool_history) > MAX_TOOL_HISTORY:
            del self.tool_history[: len(self.tool_history) - MAX_TOOL_HISTORY]
        self.touch()

    def get_stats(self) -> dict[str, Any]:
        """Get session statistics."""
        return {
            "session_id": self.session_id,
            "phase": self.phase.value,
            "intent": self.workflow.intent.value if self.workflow.intent else None,
            "error_count": self.error_count,
            "escalated": bool(self.error_recovery and self.error_recovery.escalated),
            "tool_calls": len(self.tool_history),
            "todo_count": self.todo_count,
            "todos_completed": self.todos_completed,
            "duration_seconds": (datetime.now() - self.created_at).total_seconds(),
        }
