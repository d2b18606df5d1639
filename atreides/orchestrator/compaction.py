"""
Atreides - Compaction State Preservation

When the host compacts (summarizes) a conversation, the session's
orchestration state would be lost with the discarded history. This module
serializes the parts that matter into a sentinel-delimited markdown block
that survives inside the summary, and parses it back afterwards.

Block format (field order is fixed; optional fields are omitted):

    ---
    <!-- ATREIDES STATE -->

    **Workflow Phase:** implementation
    **Intent:** feature

    **Pending Todos:** 2
    [ ] Add login form
    [-] Wire session cookie

    **Todo Progress:** 1/3 completed

    **Error Recovery:** 3 strikes
    **Escalation Status:** ACTIVE (Stilgar mode)
    **Triggering Tool:** bash
    **Escalated At:** 2026-01-01T12:00:00

    **Last Error Output (truncated):**
    ```
    npm ERR! ...
    ```

    **Recent Tool History:**
    - read (✓)
    - bash (✗)

    **Identity:** Muad'Dib

    <!-- END ATREIDES STATE -->
    ---
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime

from atreides.exceptions import CompactionParseError
from atreides.logging import log_session_event
from atreides.session import SessionStore
from atreides.state import (
    ErrorRecoveryState,
    LastErrorInfo,
    SessionState,
    WorkflowPhase,
    parse_intent,
    parse_phase,
)

from .todos import STATUS_IN_PROGRESS, STATUS_PENDING, TodoTracker, todo_id

logger = logging.getLogger(__name__)

BLOCK_START = "<!-- ATREIDES STATE -->"
BLOCK_END = "<!-- END ATREIDES STATE -->"
FAILED_SESSION_NOT_FOUND = "<!-- Atreides state preservation failed: session not found -->"
FAILED_GENERIC = "<!-- Atreides state preservation failed -->"

RECENT_TOOL_LIMIT = 10
MAX_ERROR_OUTPUT = 500

_BLOCK_RE = re.compile(re.escape(BLOCK_START) + r"(.*?)" + re.escape(BLOCK_END), re.DOTALL)
# Labels are matched at line start only
_PHASE_RE = re.compile(r"^\*\*Workflow Phase:\*\*[ \t]*(\w+)", re.MULTILINE)
_INTENT_RE = re.compile(r"^\*\*Intent:\*\*[ \t]*(\w+)", re.MULTILINE)
_STRIKES_RE = re.compile(r"^\*\*Error Recovery:\*\*[ \t]*(\d+)", re.MULTILINE)
_ESCALATED_RE = re.compile(r"^\*\*Escalation Status:\*\*[ \t]*ACTIVE", re.MULTILINE)
_TRIGGER_RE = re.compile(r"^\*\*Triggering Tool:\*\*[ \t]*(\S+)", re.MULTILINE)
_ESCALATED_AT_RE = re.compile(r"^\*\*Escalated At:\*\*[ \t]*(\S+)", re.MULTILINE)
_PROGRESS_RE = re.compile(r"^\*\*Todo Progress:\*\*[ \t]*(\d+)/(\d+)", re.MULTILINE)
_ERROR_LABEL_RE = re.compile(r"^\*\*Last Error Output \(truncated\):\*\*[ \t]*\n```\n", re.MULTILINE)
_IDENTITY_RE = re.compile(r"^\*\*Identity:\*\*[ \t]*(.+)", re.MULTILINE)
_TODO_LINE_RE = re.compile(r"^\[([- ])\]\s+(.+)$")
_TOOL_LINE_RE = re.compile(r"^- (\S+) \(([✓✗])\)$")


@dataclass
class PendingTodo:
    id: str
    description: str
    status: str = STATUS_PENDING


@dataclass
class ToolHistoryEntry:
    tool: str
    success: bool


@dataclass
class PreservedState:
    """Snapshot of the session state that must survive compaction."""

    workflow_phase: WorkflowPhase = WorkflowPhase.IDLE
    intent: str | None = None
    pending_todos: list[PendingTodo] = field(default_factory=list)
    strike_count: int = 0
    escalated: bool = False
    escalated_at: datetime | None = None
    triggering_tool: str | None = None
    last_error_output: str | None = None
    recent_tools: list[ToolHistoryEntry] = field(default_factory=list)
    total_todos: int = 0
    completed_todos: int = 0
    persona_name: str | None = None


def _single_line(text: str) -> str:
    return " ".join(text.split())


def format_block(state: PreservedState) -> str:
    """Render a PreservedState as the sentinel-delimited markdown block."""
    lines = ["", "---", BLOCK_START, "", f"**Workflow Phase:** {state.workflow_phase.value}"]

    if state.intent:
        lines.append(f"**Intent:** {state.intent}")

    lines += ["", f"**Pending Todos:** {len(state.pending_todos)}"]
    for todo in state.pending_todos:
        marker = "[-]" if todo.status == STATUS_IN_PROGRESS else "[ ]"
        lines.append(f"{marker} {_single_line(todo.description)}")

    if state.total_todos > 0:
        lines += ["", f"**Todo Progress:** {state.completed_todos}/{state.total_todos} completed"]

    suffix = "" if state.strike_count == 1 else "s"
    lines += ["", f"**Error Recovery:** {state.strike_count} strike{suffix}"]

    if state.escalated:
        lines.append("**Escalation Status:** ACTIVE (Stilgar mode)")
        if state.triggering_tool:
            lines.append(f"**Triggering Tool:** {state.triggering_tool}")
        if state.escalated_at:
            lines.append(f"**Escalated At:** {state.escalated_at.isoformat()}")

    if state.last_error_output:
        lines += ["", "**Last Error Output (truncated):**", "```", state.last_error_output, "```"]

    if state.recent_tools:
        lines += ["", "**Recent Tool History:**"]
        lines += [f"- {t.tool} ({'✓' if t.success else '✗'})" for t in state.recent_tools]

    if state.persona_name:
        lines += ["", f"**Identity:** {state.persona_name}"]

    lines += ["", BLOCK_END, "---", ""]
    return "\n".join(lines)


def _section_lines(block: str, label: str) -> list[str]:
    """Lines following a bold label, up to the next blank line."""
    lines = block.splitlines()
    for i, line in enumerate(lines):
        if line.startswith(label):
            section = []
            for following in lines[i + 1 :]:
                if not following.strip() or following.startswith("**"):
                    break
                section.append(following)
            return section
    return []


def _split_block(block: str) -> tuple[str, str | None, str]:
    """
    Split a block around its fenced error output.

    The fence holds raw tool output, so labels inside it are never read
    as fields. Fields before the fence come from the head, the tool
    history and identity from the tail.

    Returns:
        (head, error output or None, tail)
    """
    label = _ERROR_LABEL_RE.search(block)
    if label is None:
        return block, None, block

    body_start = label.end()
    fence = block.rfind("\n```", body_start - 1)
    if fence < body_start - 1:
        return block[: label.start()], None, block[body_start:]
    body = block[body_start:fence] if fence >= body_start else ""
    return block[: label.start()], body, block[fence + len("\n```") :]


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def parse_block(text: str, strict: bool = False) -> PreservedState | None:
    """
    Find and parse a preserved-state block anywhere in text.

    Missing optional fields take their defaults. A block without both
    sentinels or without a Workflow Phase line is treated as absent.

    Args:
        text: Document that may contain a block
        strict: Raise instead of returning None

    Returns:
        The parsed state, or None

    Raises:
        CompactionParseError: If strict and no valid block was found
    """
    try:
        match = _BLOCK_RE.search(text or "")
        if match is None:
            raise CompactionParseError("No preserved state block found")
        head, error_output, tail = _split_block(match.group(1))

        phase_match = _PHASE_RE.search(head)
        if phase_match is None:
            raise CompactionParseError("Preserved state block has no workflow phase")

        state = PreservedState(workflow_phase=parse_phase(phase_match.group(1)))

        if m := _INTENT_RE.search(head):
            state.intent = m.group(1)
        if m := _STRIKES_RE.search(head):
            state.strike_count = int(m.group(1))
        state.escalated = _ESCALATED_RE.search(head) is not None
        if m := _TRIGGER_RE.search(head):
            state.triggering_tool = m.group(1)
        if m := _ESCALATED_AT_RE.search(head):
            state.escalated_at = _parse_timestamp(m.group(1))
        if m := _PROGRESS_RE.search(head):
            state.completed_todos, state.total_todos = int(m.group(1)), int(m.group(2))
        if error_output is not None:
            state.last_error_output = error_output.strip() or None
        if m := _IDENTITY_RE.search(tail):
            state.persona_name = m.group(1).strip()

        for line in _section_lines(head, "**Pending Todos:**"):
            if m := _TODO_LINE_RE.match(line.strip()):
                description = m.group(2).strip()
                status = STATUS_IN_PROGRESS if m.group(1) == "-" else STATUS_PENDING
                state.pending_todos.append(PendingTodo(todo_id(description), description, status))

        for line in _section_lines(tail, "**Recent Tool History:**"):
            if m := _TOOL_LINE_RE.match(line.strip()):
                state.recent_tools.append(ToolHistoryEntry(m.group(1), m.group(2) == "✓"))

        return state
    except CompactionParseError:
        if strict:
            raise
        return None
    except Exception as e:
        logger.error(f"Failed to parse preserved state: {e}")
        if strict:
            raise CompactionParseError("Malformed preserved state block", {"error": str(e)}) from e
        return None


class CompactionPreservation:
    """Builds, injects and restores preserved-state blocks for sessions."""

    def __init__(self, store: SessionStore, todos: TodoTracker):
        self.store = store
        self.todos = todos

    def extract(self, state: SessionState, persona_name: str | None = None) -> PreservedState:
        """Take a snapshot of one session."""
        pending = [
            PendingTodo(todo.id, todo.description, todo.status)
            for todo in self.todos.pending(state.session_id)
        ]
        recent = [ToolHistoryEntry(r.tool, r.success) for r in state.tool_history[-RECENT_TOOL_LIMIT:]]

        recovery = state.error_recovery
        escalated = bool(recovery and recovery.escalated)
        last_error = state.last_error
        error_output = None
        if last_error and last_error.output:
            # Sentinels inside tool output would end the block early
            error_output = last_error.output[:MAX_ERROR_OUTPUT].replace("<!--", "<! --").strip() or None

        triggering_tool = None
        if escalated:
            triggering_tool = recovery.triggering_tool or (last_error.tool if last_error else None)

        return PreservedState(
            workflow_phase=state.phase,
            intent=state.workflow.intent.value if state.workflow.intent else None,
            pending_todos=pending,
            strike_count=state.error_count,
            escalated=escalated,
            escalated_at=recovery.escalated_at if escalated else None,
            triggering_tool=triggering_tool,
            last_error_output=error_output,
            recent_tools=recent,
            total_todos=state.todo_count,
            completed_todos=state.todos_completed,
            persona_name=persona_name,
        )

    def preserve(self, session_id: str, persona_name: str | None = None) -> str:
        """
        Render the block for a session.

        Never raises; failures come back as an HTML comment.
        """
        try:
            state = self.store.get_or_none(session_id)
            if state is None:
                logger.warning(f"No session state found for compaction: {session_id}")
                return FAILED_SESSION_NOT_FOUND

            preserved = self.extract(state, persona_name)
            log_session_event(
                "compaction",
                session_id,
                to_phase=preserved.workflow_phase.value,
                strike_count=preserved.strike_count,
                pending_todos=len(preserved.pending_todos),
            )
            return format_block(preserved)
        except Exception as e:
            logger.error(f"State preservation failed for {session_id}: {e}")
            return FAILED_GENERIC

    def inject(self, summary: str, session_id: str, persona_name: str | None = None) -> str:
        """Append the session's block to a compaction summary."""
        block = self.preserve(session_id, persona_name)
        if not summary:
            return block
        return f"{summary.rstrip()}\n{block}"

    def restore(self, session_id: str, preserved: PreservedState) -> bool:
        """
        Apply a snapshot onto an existing session.

        Fields the snapshot does not carry (config, metadata, tool history)
        are left as they are. The phase is set directly and not recorded
        as a transition.

        Returns:
            True if the session existed and was updated
        """
        try:
            state = self.store.get_or_none(session_id)
            if state is None:
                logger.warning(f"Cannot restore state, session not found: {session_id}")
                return False

            self.store.set_phase(session_id, preserved.workflow_phase)
            if preserved.workflow_phase != WorkflowPhase.IDLE:
                state.workflow_started = True
            if intent := parse_intent(preserved.intent):
                state.workflow.intent = intent

            state.error_count = preserved.strike_count
            if preserved.escalated:
                state.error_recovery = ErrorRecoveryState(
                    escalated=True,
                    escalated_at=preserved.escalated_at,
                    triggering_tool=preserved.triggering_tool,
                    strike_count=preserved.strike_count,
                )
            if preserved.last_error_output:
                state.last_error = LastErrorInfo(
                    timestamp=datetime.now(),
                    tool=preserved.triggering_tool or "unknown",
                    output=preserved.last_error_output,
                    category="generic",
                )

            self.todos.restore_pending(
                session_id,
                [(t.description, t.status == STATUS_IN_PROGRESS) for t in preserved.pending_todos],
            )
            self.store.update_todos(session_id, preserved.total_todos, preserved.completed_todos)

            logger.info(
                f"State restored for {session_id}: phase={preserved.workflow_phase.value}, "
                f"strikes={preserved.strike_count}, pending={len(preserved.pending_todos)}"
            )
            log_session_event(
                "restore",
                session_id,
                to_phase=preserved.workflow_phase.value,
                strike_count=preserved.strike_count,
                pending_todos=len(preserved.pending_todos),
            )
            return True
        except Exception as e:
            logger.error(f"Failed to restore state for {session_id}: {e}")
            return False

    def restore_from_text(self, session_id: str, text: str) -> bool:
        """Parse a block out of text and restore it. False if none found."""
        preserved = parse_block(text)
        if preserved is None:
            return False
        return self.restore(session_id, preserved)
