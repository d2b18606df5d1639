"""
Atreides - Workflow Phase Engine

Moves a session through idle -> intent -> assessment/exploration ->
implementation -> verification based on which tools the assistant runs.
Transitions outside VALID_TRANSITIONS are dropped with a debug log; the
engine never raises into the caller.
"""

from __future__ import annotations

import logging
import re
import time

from atreides.logging import log_session_event
from atreides.session import SessionStore
from atreides.state import (
    EARLY_PHASES,
    PHASE_ORDER,
    IntentType,
    PhaseTransition,
    WorkflowPhase,
    WorkflowState,
)

logger = logging.getLogger(__name__)

# Warn when a single update_phase call takes longer than this
PHASE_UPDATE_BUDGET_MS = 5.0

SHELL_TOOLS = {"bash", "shell"}

# =============================================================================
# TOOL -> CANDIDATE PHASES
# =============================================================================

EXPLORATION, IMPLEMENTATION, VERIFICATION = (
    WorkflowPhase.EXPLORATION,
    WorkflowPhase.IMPLEMENTATION,
    WorkflowPhase.VERIFICATION,
)

PHASE_TOOL_PATTERNS: dict[str, list[WorkflowPhase]] = {
    # Reading and searching
    "read": [EXPLORATION],
    "grep": [EXPLORATION],
    "grep_search": [EXPLORATION],
    "file_search": [EXPLORATION],
    "list_dir": [EXPLORATION],
    "glob": [EXPLORATION],
    "search": [EXPLORATION],
    "codebase_search": [EXPLORATION],
    # Writing
    "edit": [IMPLEMENTATION],
    "write": [IMPLEMENTATION],
    "multiedit": [IMPLEMENTATION],
    "create": [IMPLEMENTATION],
    # Shell commands are disambiguated by their text
    "bash": [EXPLORATION, IMPLEMENTATION, VERIFICATION],
    "shell": [EXPLORATION, IMPLEMENTATION, VERIFICATION],
    # Checking
    "test": [VERIFICATION],
    "lint": [VERIFICATION],
    "typecheck": [VERIFICATION],
    "build": [VERIFICATION],
    # Todo lists can be written at any point before verification
    "todowrite": [
        WorkflowPhase.INTENT,
        WorkflowPhase.ASSESSMENT,
        EXPLORATION,
        IMPLEMENTATION,
    ],
}

# =============================================================================
# SHELL COMMAND -> PHASE (first match wins)
# =============================================================================

I = re.IGNORECASE

_IMPLEMENTATION_COMMANDS: list[tuple[str, int]] = [
    # Dependency installs
    (r"\b(npm|yarn|pnpm|bun)\s+install\b", I),
    (r"\b(pip|pipenv|poetry)\s+install\b", I),
    (r"\bcargo\s+add\b", I),
    (r"\bgo\s+get\b", I),
    (r"\bgo\s+mod\s+tidy\b", I),
    (r"\bbrew\s+install\b", I),
    (r"\bapt(-get)?\s+install\b", I),
    # State-changing git
    (r"\bgit\s+add\b", I),
    (r"\bgit\s+commit\b", I),
    (r"\bgit\s+merge\b", I),
    (r"\bgit\s+rebase\b", I),
    (r"\bgit\s+cherry-pick\b", I),
    (r"\bgit\s+stash\b", I),
    (r"\bgit\s+checkout\s+-b\b", I),
    (r"\bgit\s+push\b", I),
    (r"\bgit\s+pull\b", I),
    (r"\bgit\s+reset\b", I),
    # Filesystem changes
    (r"\bmkdir\b", 0),
    (r"\btouch\b", 0),
    (r"\bcp\s+-", 0),
    (r"\bcp\s+\S+\s+\S+", 0),
    (r"\bmv\s+", 0),
    (r"\brm\s+-", 0),
    (r"\bchmod\b", 0),
    (r"\bchown\b", 0),
    # Running project tasks
    (r"\bnpm\s+run\b", I),
    (r"\byarn\s+run\b", I),
    (r"\bmake\s+", 0),
    (r"\bcmake\b", I),
    (r"\bdocker\s+build\b", I),
    (r"\bdocker\s+run\b", I),
]

_TEST_COMMANDS: list[tuple[str, int]] = [
    (r"\btest\b", I),
    (r"\bjest\b", I),
    (r"\bvitest\b", I),
    (r"\bmocha\b", I),
    (r"\bpytest\b", I),
    (r"\bcargo test\b", I),
    (r"\bgo test\b", I),
    (r"\bnpm test\b", I),
    (r"\bbun test\b", I),
    (r"\byarn test\b", I),
    (r"\bmake test\b", I),
]

_BUILD_COMMANDS: list[tuple[str, int]] = [
    (r"\bbuild\b", I),
    (r"\blint\b", I),
    (r"\btsc\b", 0),
    (r"\btypecheck\b", I),
    (r"\bcompile\b", I),
    (r"\bnpm run build\b", I),
    (r"\bbun build\b", I),
    (r"\bcargo build\b", I),
]

_EXPLORATION_COMMANDS: list[tuple[str, int]] = [
    # Read-only git
    (r"\bgit\s+status\b", I),
    (r"\bgit\s+log\b", I),
    (r"\bgit\s+diff\b", I),
    (r"\bgit\s+show\b", I),
    (r"\bgit\s+branch\b", I),
    (r"\bgit\s+remote\b", I),
    (r"\bgit\s+describe\b", I),
    (r"\bgit\s+blame\b", I),
    (r"\bgit\s+shortlog\b", I),
    # File inspection
    (r"\bcat\s+", 0),
    (r"\bls\b", 0),
    (r"\bfind\s+", 0),
    (r"\bgrep\s+", 0),
    (r"\brg\s+", 0),
    (r"\bhead\s+", 0),
    (r"\btail\s+", 0),
    (r"\bless\b", 0),
    (r"\bmore\b", 0),
    (r"\bwc\s+", 0),
    (r"\bfile\s+", 0),
    (r"\bstat\s+", 0),
    (r"\btree\b", 0),
    # Environment inspection
    (r"\bwhich\s+", 0),
    (r"\bwhereis\s+", 0),
    (r"\benv\b", 0),
    (r"\bpwd\b", 0),
    (r"\becho\s+\$", 0),
    (r"\bprintenv\b", 0),
    (r"\btype\s+", 0),
    (r"\bcommand\s+-v\b", 0),
]


def _rules(patterns: list[tuple[str, int]], phase: WorkflowPhase) -> list[tuple[re.Pattern[str], WorkflowPhase]]:
    return [(re.compile(p, flags), phase) for p, flags in patterns]


# State-changing commands must be checked before read-only ones
SHELL_PHASE_RULES: list[tuple[re.Pattern[str], WorkflowPhase]] = (
    _rules(_IMPLEMENTATION_COMMANDS, IMPLEMENTATION)
    + _rules(_TEST_COMMANDS, VERIFICATION)
    + _rules(_BUILD_COMMANDS, VERIFICATION)
    + _rules(_EXPLORATION_COMMANDS, EXPLORATION)
)

# =============================================================================
# INTENT KEYWORDS (table order breaks ties)
# =============================================================================

INTENT_KEYWORDS: dict[IntentType, list[str]] = {
    IntentType.FEATURE: ["add", "implement", "create", "build", "new feature", "feature", "develop"],
    IntentType.BUGFIX: ["fix", "bug", "error", "issue", "broken", "not working", "crash", "failing"],
    IntentType.REFACTOR: ["refactor", "clean up", "improve", "optimize", "restructure", "reorganize"],
    IntentType.EXPLORATION: ["understand", "explain", "how does", "what is", "find", "search", "where", "show me"],
    IntentType.DOCUMENTATION: ["document", "docs", "readme", "comment", "jsdoc", "tsdoc", "explain"],
    IntentType.TEST: ["test", "coverage", "spec", "unit test", "integration test", "e2e"],
    IntentType.CONFIG: ["config", "configure", "setup", "settings", "environment", "env", ".json", ".yaml"],
}

# =============================================================================
# PHASE GUIDANCE
# =============================================================================

PHASE_GUIDANCE: dict[WorkflowPhase, str] = {
    WorkflowPhase.IDLE: "",
    WorkflowPhase.INTENT: (
        "[WORKFLOW PHASE: INTENT]\n"
        "You are in the INTENT phase. Focus on:\n"
        "- Understanding the user's request\n"
        "- Asking clarifying questions if needed\n"
        "- Identifying the scope of the task"
    ),
    WorkflowPhase.ASSESSMENT: (
        "[WORKFLOW PHASE: ASSESSMENT]\n"
        "You are in the ASSESSMENT phase. Focus on:\n"
        "- Analyzing the problem/request\n"
        "- Identifying what information is needed\n"
        "- Planning your approach before exploring"
    ),
    WorkflowPhase.EXPLORATION: (
        "[WORKFLOW PHASE: EXPLORATION]\n"
        "You are in the EXPLORATION phase. Focus on:\n"
        "- Reading relevant files and code\n"
        "- Searching for patterns and dependencies\n"
        "- Building understanding before making changes\n"
        "Do NOT make changes yet - gather information first."
    ),
    WorkflowPhase.IMPLEMENTATION: (
        "[WORKFLOW PHASE: IMPLEMENTATION]\n"
        "You are in the IMPLEMENTATION phase. Focus on:\n"
        "- Making targeted, minimal changes\n"
        "- Following existing patterns and conventions\n"
        "- Testing changes as you go"
    ),
    WorkflowPhase.VERIFICATION: (
        "[WORKFLOW PHASE: VERIFICATION]\n"
        "You are in the VERIFICATION phase. Focus on:\n"
        "- Running tests to verify changes\n"
        "- Checking for regressions\n"
        "- Validating the implementation meets requirements"
    ),
}

INTENT_GUIDANCE: dict[IntentType, str] = {
    IntentType.FEATURE: "This is a FEATURE implementation task.",
    IntentType.BUGFIX: "This is a BUGFIX task. Focus on identifying root cause.",
    IntentType.REFACTOR: "This is a REFACTOR task. Preserve behavior while improving code.",
    IntentType.EXPLORATION: "This is an EXPLORATION task. Focus on understanding, not changing.",
    IntentType.DOCUMENTATION: "This is a DOCUMENTATION task. Focus on clarity and completeness.",
    IntentType.TEST: "This is a TEST task. Focus on coverage and edge cases.",
    IntentType.CONFIG: "This is a CONFIGURATION task. Be careful with environment-specific values.",
}


def classify_intent(text: str) -> IntentType:
    """
    Classify a request by counting matching keywords per category.

    The highest score wins; ties go to the category listed first in
    INTENT_KEYWORDS. No matches at all gives UNKNOWN.
    """
    lowered = text.lower()
    best, best_score = IntentType.UNKNOWN, 0
    for intent, keywords in INTENT_KEYWORDS.items():
        score = sum(1 for keyword in keywords if keyword in lowered)
        if score > best_score:
            best, best_score = intent, score
    return best


def generate_phase_guidance(phase: WorkflowPhase, intent: IntentType | None = None) -> str:
    """Fixed guidance block for a phase, plus one intent line when known."""
    text = PHASE_GUIDANCE[phase]
    if intent and intent != IntentType.UNKNOWN and phase != WorkflowPhase.IDLE:
        text += f"\n{INTENT_GUIDANCE[intent]}"
    return text


def _extract_shell_command(tool_input: object) -> str | None:
    if isinstance(tool_input, str):
        return tool_input
    if isinstance(tool_input, dict):
        for key in ("command", "cmd"):
            if isinstance(tool_input.get(key), str):
                return tool_input[key]
    return None


def detect_phase_from_command(current: WorkflowPhase, tool_input: object) -> WorkflowPhase:
    """Suggest a phase for a shell command using SHELL_PHASE_RULES."""
    command = _extract_shell_command(tool_input)
    if not command:
        return EXPLORATION if current == WorkflowPhase.IDLE else current

    for pattern, phase in SHELL_PHASE_RULES:
        if pattern.search(command):
            return phase

    return EXPLORATION if current in EARLY_PHASES else current


def detect_phase_from_tool(
    tool: str,
    current: WorkflowPhase,
    tool_input: object = None,
) -> WorkflowPhase | None:
    """
    Suggest the phase a tool execution points to.

    Returns:
        Suggested phase, or None for tools with no phase meaning
    """
    name = tool.lower()
    if name in SHELL_TOOLS:
        return detect_phase_from_command(current, tool_input)

    candidates = PHASE_TOOL_PATTERNS.get(name)
    if not candidates:
        return None
    if len(candidates) == 1:
        return candidates[0]

    # Prefer the first candidate ahead of the current phase
    current_index = PHASE_ORDER.index(current)
    for phase in candidates:
        if PHASE_ORDER.index(phase) > current_index:
            return phase
    return candidates[0]


class WorkflowPhaseEngine:
    """Applies tool-driven phase transitions to sessions in a SessionStore."""

    def __init__(self, store: SessionStore):
        self.store = store

    def update_phase(self, tool: str, session_id: str, tool_input: object = None) -> WorkflowPhase:
        """
        Transition the session if the tool suggests a reachable phase.

        Never raises; returns IDLE if anything goes wrong.

        Args:
            tool: Tool that just ran
            session_id: Session identifier
            tool_input: Tool input (used for shell commands)

        Returns:
            The session's phase after the update
        """
        start = time.perf_counter()
        try:
            state = self.store.get_or_none(session_id)
            if state is None:
                return WorkflowPhase.IDLE

            current = state.workflow.current_phase
            suggested = detect_phase_from_tool(tool, current, tool_input)
            if suggested is None or suggested == current:
                return current

            if self._transition(state.workflow, session_id, suggested, triggered_by=tool):
                state.touch()
                return suggested

            logger.debug(f"Phase transition rejected: {current.value} -> {suggested.value} (tool: {tool})")
            return current
        except Exception as e:
            logger.error(f"Phase update failed for {session_id}: {e}")
            return WorkflowPhase.IDLE
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000
            if elapsed_ms > PHASE_UPDATE_BUDGET_MS:
                logger.warning(f"Phase update took {elapsed_ms:.1f}ms (budget {PHASE_UPDATE_BUDGET_MS}ms)")

    def transition(
        self,
        session_id: str,
        to_phase: WorkflowPhase,
        triggered_by: str | None = None,
        reason: str | None = None,
    ) -> bool:
        """
        Request an explicit transition.

        Returns:
            True if the transition was in the table and applied
        """
        state = self.store.get_or_none(session_id)
        if state is None:
            return False
        if self._transition(state.workflow, session_id, to_phase, triggered_by, reason):
            state.touch()
            return True
        logger.debug(f"Phase transition rejected: {state.phase.value} -> {to_phase.value}")
        return False

    def _transition(
        self,
        workflow: WorkflowState,
        session_id: str,
        to_phase: WorkflowPhase,
        triggered_by: str | None = None,
        reason: str | None = None,
    ) -> bool:
        from_phase = workflow.current_phase
        if not workflow.transition_to(to_phase, triggered_by=triggered_by, reason=reason):
            return False
        logger.debug(f"Phase {from_phase.value} -> {to_phase.value} in {session_id}")
        log_session_event(
            "phase_change",
            session_id,
            from_phase=from_phase.value,
            to_phase=to_phase.value,
            tool=triggered_by,
            detail=reason or "",
        )
        return True

    def start_workflow(self, session_id: str, message: str | None = None) -> bool:
        """
        Move an idle session into INTENT.

        Args:
            session_id: Session identifier
            message: Optional user request to classify

        Returns:
            True if the workflow was started
        """
        state = self.store.get_or_none(session_id)
        if state is None:
            return False
        if message:
            state.workflow.intent = classify_intent(message)
        if state.phase != WorkflowPhase.IDLE:
            return False
        return self.transition(
            session_id,
            WorkflowPhase.INTENT,
            triggered_by="workflow_start",
            reason="Workflow started",
        )

    def set_intent(self, session_id: str, text: str) -> IntentType:
        """Classify text and store it as the session's intent."""
        intent = classify_intent(text)
        state = self.store.get_or_none(session_id)
        if state is not None:
            state.workflow.intent = intent
        return intent

    def get_phase_history(self, session_id: str) -> list[PhaseTransition]:
        workflow = self.store.get_workflow(session_id)
        return list(workflow.phase_history) if workflow else []

    def is_workflow_complete(self, session_id: str) -> bool:
        workflow = self.store.get_workflow(session_id)
        return bool(workflow and workflow.completed)

    def reset_workflow(self, session_id: str) -> None:
        """Put the session back into a fresh IDLE workflow."""
        state = self.store.get_or_none(session_id)
        if state is not None:
            state.workflow = WorkflowState()
            state.workflow_started = False

    def guidance_for(self, session_id: str) -> str:
        """Phase guidance for the session's current phase and intent."""
        workflow = self.store.get_workflow(session_id)
        if workflow is None:
            return ""
        return generate_phase_guidance(workflow.current_phase, workflow.intent)
