"""
Atreides - Todo Tracker

Builds a per-session todo list from assistant text: markdown checkbox
lines create and complete items, and phrases like "finished the X task"
complete the pending item they refer to. The stop gate refuses to end a
session while items are pending.

Detection and the gate fail open. A tracker bug must never be the reason
a session cannot stop.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from atreides.session import SessionStore

logger = logging.getLogger(__name__)

# =============================================================================
# PATTERNS
# =============================================================================

UNCHECKED_PATTERN = re.compile(r"^([\t ]*[-*+]\s*\[\s*\]\s+)(.+)$", re.MULTILINE)
CHECKED_PATTERN = re.compile(r"^([\t ]*[-*+]\s*\[[xX✓✔]\]\s+)(.+)$", re.MULTILINE)
IN_PROGRESS_PATTERN = re.compile(r"^([\t ]*[-*+]\s*\[[-~]\]\s+)(.+)$", re.MULTILINE)
# Checkbox lines are item text, not completion phrases
CHECKBOX_LINE_PATTERN = re.compile(r"^[\t ]*[-*+]\s*\[[^\]\n]*\][^\n]*$", re.MULTILINE)

COMPLETION_PATTERNS: list[re.Pattern[str]] = [
    # "completed the login form", "finished 'setup' task"
    re.compile(
        r"\b(?:completed?|finished?|done|resolved|addressed)\s+(?:the\s+)?[\"']?([^\"'\n.!?]+)[\"']?\s*(?:task|todo|item)?",
        re.IGNORECASE,
    ),
    # "task 'setup' is done"
    re.compile(
        r"\b(?:task|todo|item)\s+[\"']?([^\"'\n.!?]+)[\"']?\s+(?:is\s+)?(?:completed?|finished?|done)",
        re.IGNORECASE,
    ),
    # "marked setup as done"
    re.compile(
        r"\b(?:marked?|mark)\s+[\"']?([^\"'\n.!?]+)[\"']?\s+(?:as\s+)?(?:completed?|finished?|done)",
        re.IGNORECASE,
    ),
]

_SIGNIFICANT_WORD = re.compile(r"\b\w{3,}\b")
_WHITESPACE = re.compile(r"\s+")

# Phrases shorter than this are too vague to match anything
MIN_PHRASE_LENGTH = 3
WORD_OVERLAP_RATIO = 0.5

STATUS_PENDING = "pending"
STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"


@dataclass
class TodoItem:
    """One tracked task."""

    id: str
    description: str
    created_at: datetime = field(default_factory=datetime.now)
    completed_at: datetime | None = None
    in_progress: bool = False

    @property
    def completed(self) -> bool:
        return self.completed_at is not None

    @property
    def status(self) -> str:
        if self.completed:
            return STATUS_COMPLETED
        return STATUS_IN_PROGRESS if self.in_progress else STATUS_PENDING


@dataclass
class TodoSummary:
    total: int = 0
    pending: int = 0
    completed: int = 0


@dataclass
class TodoChanges:
    """Items created and completed by one detection pass."""

    created: list[TodoItem] = field(default_factory=list)
    completed: list[TodoItem] = field(default_factory=list)
    removed: list[TodoItem] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created or self.completed or self.removed)


@dataclass
class StopDecision:
    """Answer to "may this session stop now?"."""

    allow: bool
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"allow": self.allow}
        if self.reason:
            data["reason"] = self.reason
        return data


def normalize_description(description: str) -> str:
    return _WHITESPACE.sub(" ", description.lower()).strip()


def todo_id(description: str) -> str:
    """Stable id from the lower-cased, whitespace-collapsed description."""
    digest = hashlib.sha256(normalize_description(description).encode("utf-8")).hexdigest()
    return f"todo-{digest[:12]}"


def fuzzy_match(phrase: str, description: str) -> bool:
    """
    Match a completion phrase against a todo description.

    True when either contains the other (case-insensitive), or when at
    least half of the smaller set of 3+ letter words is shared.
    """
    a, b = phrase.lower().strip(), description.lower().strip()
    if not a or not b:
        return False
    if a in b or b in a:
        return True

    words_a = set(_SIGNIFICANT_WORD.findall(a))
    words_b = set(_SIGNIFICANT_WORD.findall(b))
    smaller = min(len(words_a), len(words_b))
    if smaller == 0:
        return False
    return len(words_a & words_b) >= WORD_OVERLAP_RATIO * smaller


def format_pending_reason(pending: list[TodoItem]) -> str:
    items = "\n".join(f"- [ ] {todo.description}" for todo in pending)
    return (
        f"Cannot stop: {len(pending)} pending todo(s)\n\n"
        f"{items}\n\n"
        "Please complete or remove todos before stopping."
    )


class TodoTracker:
    """Per-session todo maps, mirrored into SessionState counters."""

    def __init__(self, store: SessionStore):
        self.store = store
        self._todos: dict[str, dict[str, TodoItem]] = {}

    # =========================================================================
    # Detection
    # =========================================================================

    def detect(self, session_id: str, text: str) -> TodoChanges:
        """
        Scan assistant text for checkbox items and completion phrases.

        Never raises; a failure yields an empty change set.
        """
        changes = TodoChanges()
        if not text:
            return changes

        try:
            for match in UNCHECKED_PATTERN.finditer(text):
                item = self._add(session_id, match.group(2))
                if item is not None:
                    changes.created.append(item)

            for match in CHECKED_PATTERN.finditer(text):
                existing = self.find_by_description(session_id, match.group(2))
                if existing is not None and not existing.completed:
                    existing.completed_at = datetime.now()
                    changes.completed.append(existing)

            for match in IN_PROGRESS_PATTERN.finditer(text):
                description = match.group(2)
                existing = self.find_by_description(session_id, description)
                if existing is None:
                    item = self._add(session_id, description, in_progress=True)
                    if item is not None:
                        changes.created.append(item)
                elif not existing.completed:
                    existing.in_progress = True

            prose = CHECKBOX_LINE_PATTERN.sub("", text)
            changes.completed.extend(self._complete_from_phrases(session_id, prose))
        except Exception as e:
            logger.error(f"Todo detection failed for {session_id}: {e}")
            return TodoChanges()
        finally:
            self._sync_counts(session_id)

        if changes.changed:
            logger.debug(
                f"Todos in {session_id}: +{len(changes.created)} created, "
                f"{len(changes.completed)} completed"
            )
        return changes

    def _complete_from_phrases(self, session_id: str, text: str) -> list[TodoItem]:
        completed: list[TodoItem] = []
        for pattern in COMPLETION_PATTERNS:
            for match in pattern.finditer(text):
                phrase = match.group(1).strip()
                if len(phrase) < MIN_PHRASE_LENGTH:
                    continue
                for todo in self.pending(session_id):
                    if fuzzy_match(phrase, todo.description):
                        todo.completed_at = datetime.now()
                        completed.append(todo)
                        break
        return completed

    def sync_structured(self, session_id: str, todos: list[Any]) -> TodoChanges:
        """
        Apply a structured todo list written by a todo tool.

        Each entry is a dict with "content" (or "description") and
        "status". Never raises.
        """
        changes = TodoChanges()
        try:
            for entry in todos:
                if not isinstance(entry, dict):
                    continue
                description = str(entry.get("content") or entry.get("description") or "").strip()
                if not description:
                    continue
                status = str(entry.get("status") or STATUS_PENDING).lower()
                existing = self.find_by_description(session_id, description)

                if status == STATUS_CANCELLED:
                    if existing is not None and self.remove(session_id, existing.id, sync=False):
                        changes.removed.append(existing)
                elif status == STATUS_COMPLETED:
                    if existing is None:
                        existing = self._add(session_id, description)
                        if existing is not None:
                            changes.created.append(existing)
                    if existing is not None and not existing.completed:
                        existing.completed_at = datetime.now()
                        changes.completed.append(existing)
                elif existing is None:
                    item = self._add(session_id, description, in_progress=status == STATUS_IN_PROGRESS)
                    if item is not None:
                        changes.created.append(item)
                elif not existing.completed:
                    existing.in_progress = status == STATUS_IN_PROGRESS
        except Exception as e:
            logger.error(f"Structured todo sync failed for {session_id}: {e}")
        finally:
            self._sync_counts(session_id)
        return changes

    # =========================================================================
    # Explicit operations
    # =========================================================================

    def add(self, session_id: str, description: str, in_progress: bool = False) -> TodoItem | None:
        """Create a todo unless an equivalent one exists. Returns the new item."""
        item = self._add(session_id, description, in_progress)
        self._sync_counts(session_id)
        return item

    def _add(self, session_id: str, description: str, in_progress: bool = False) -> TodoItem | None:
        description = _WHITESPACE.sub(" ", description).strip()
        if not description:
            return None
        todos = self._todos.setdefault(session_id, {})
        item_id = todo_id(description)
        if item_id in todos or self.find_by_description(session_id, description) is not None:
            return None
        item = TodoItem(id=item_id, description=description, in_progress=in_progress)
        todos[item_id] = item
        return item

    def find_by_description(self, session_id: str, description: str) -> TodoItem | None:
        """Case-insensitive exact match, ignoring runs of whitespace."""
        target = normalize_description(description)
        for todo in self._todos.get(session_id, {}).values():
            if normalize_description(todo.description) == target:
                return todo
        return None

    def complete(self, session_id: str, item_id: str) -> bool:
        todo = self._todos.get(session_id, {}).get(item_id)
        if todo is None or todo.completed:
            return False
        todo.completed_at = datetime.now()
        self._sync_counts(session_id)
        return True

    def complete_by_description(self, session_id: str, description: str) -> bool:
        todo = self.find_by_description(session_id, description)
        return todo is not None and self.complete(session_id, todo.id)

    def remove(self, session_id: str, item_id: str, sync: bool = True) -> bool:
        removed = self._todos.get(session_id, {}).pop(item_id, None) is not None
        if removed and sync:
            self._sync_counts(session_id)
        return removed

    def restore_pending(self, session_id: str, items: list[tuple[str, bool]]) -> int:
        """
        Re-seed pending todos recovered from a compaction block.

        Session counters are left alone; the caller restores them from
        the same snapshot.

        Args:
            session_id: Session identifier
            items: (description, in_progress) pairs

        Returns:
            Number of todos added
        """
        added = 0
        for description, in_progress in items:
            if self._add(session_id, description, in_progress) is not None:
                added += 1
        return added

    def clear_session(self, session_id: str) -> None:
        self._todos.pop(session_id, None)

    # =========================================================================
    # Queries
    # =========================================================================

    def todos(self, session_id: str) -> list[TodoItem]:
        return list(self._todos.get(session_id, {}).values())

    def pending(self, session_id: str) -> list[TodoItem]:
        return [t for t in self.todos(session_id) if not t.completed]

    def completed(self, session_id: str) -> list[TodoItem]:
        return [t for t in self.todos(session_id) if t.completed]

    def summary(self, session_id: str) -> TodoSummary:
        todos = self.todos(session_id)
        done = sum(1 for t in todos if t.completed)
        return TodoSummary(total=len(todos), pending=len(todos) - done, completed=done)

    def check_pending(self, session_id: str) -> StopDecision:
        """
        Stop gate: refuse while any todo is pending.

        Fails open.
        """
        try:
            pending = self.pending(session_id)
            if not pending:
                return StopDecision(allow=True)
            return StopDecision(allow=False, reason=format_pending_reason(pending))
        except Exception as e:
            logger.error(f"Pending todo check failed for {session_id}, allowing stop: {e}")
            return StopDecision(allow=True)

    def _sync_counts(self, session_id: str) -> None:
        summary = self.summary(session_id)
        self.store.update_todos(session_id, summary.total, summary.completed)
