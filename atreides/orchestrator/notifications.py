"""
Atreides - Session Notifications

User-facing notices for orchestration events: error strikes and
escalations, security blocks, pending todos at stop, phase changes and
compaction. Notices are filtered by severity and event type, throttled per
session and event type, scrubbed of PII, kept in a bounded history and
handed to an optional host callback.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from atreides.config import NotificationConfig
from atreides.logging import filter_pii, now_iso

logger = logging.getLogger(__name__)

MAX_HISTORY = 100
MAX_PENDING_LISTED = 5


class NotificationEvent(Enum):
    """Kinds of session events that can produce a notification."""

    SESSION_STARTED = "session.started"
    SESSION_COMPLETED = "session.completed"
    PHASE_TRANSITION = "phase.transition"
    ERROR_STRIKE = "error.strike"
    ERROR_ESCALATION = "error.escalation"
    ERROR_RECOVERY = "error.recovery"
    SECURITY_BLOCKED = "security.blocked"
    SECURITY_WARNING = "security.warning"
    TODO_PENDING = "todo.pending"
    COMPACTION_COMPLETED = "compaction.completed"
    DELEGATION_COMPLETED = "delegation.completed"
    CUSTOM = "custom"


class Severity(Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"

    @property
    def rank(self) -> int:
        return list(Severity).index(self)


DEFAULT_TITLES: dict[NotificationEvent, str] = {
    NotificationEvent.SESSION_STARTED: "Session Started",
    NotificationEvent.SESSION_COMPLETED: "Workflow Complete",
    NotificationEvent.PHASE_TRANSITION: "Phase Changed",
    NotificationEvent.ERROR_STRIKE: "Error Detected",
    NotificationEvent.ERROR_ESCALATION: "Escalation Required",
    NotificationEvent.ERROR_RECOVERY: "Error Resolved",
    NotificationEvent.SECURITY_BLOCKED: "Security Block",
    NotificationEvent.SECURITY_WARNING: "Security Warning",
    NotificationEvent.TODO_PENDING: "Pending Tasks",
    NotificationEvent.COMPACTION_COMPLETED: "Context Compacted",
    NotificationEvent.DELEGATION_COMPLETED: "Delegation Complete",
    NotificationEvent.CUSTOM: "Notification",
}

DEFAULT_SEVERITY: dict[NotificationEvent, Severity] = {
    NotificationEvent.SESSION_STARTED: Severity.INFO,
    NotificationEvent.SESSION_COMPLETED: Severity.SUCCESS,
    NotificationEvent.PHASE_TRANSITION: Severity.INFO,
    NotificationEvent.ERROR_STRIKE: Severity.WARNING,
    NotificationEvent.ERROR_ESCALATION: Severity.ERROR,
    NotificationEvent.ERROR_RECOVERY: Severity.SUCCESS,
    NotificationEvent.SECURITY_BLOCKED: Severity.ERROR,
    NotificationEvent.SECURITY_WARNING: Severity.WARNING,
    NotificationEvent.TODO_PENDING: Severity.WARNING,
    NotificationEvent.COMPACTION_COMPLETED: Severity.INFO,
    NotificationEvent.DELEGATION_COMPLETED: Severity.INFO,
    NotificationEvent.CUSTOM: Severity.INFO,
}


@dataclass
class Notification:
    """One delivered notice."""

    id: str
    event: NotificationEvent
    severity: Severity
    session_id: str
    title: str
    message: str
    timestamp: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "type": self.event.value,
            "severity": self.severity.value,
            "sessionId": self.session_id,
            "title": self.title,
            "message": self.message,
            "timestamp": self.timestamp,
        }
        if self.data:
            result["data"] = dict(self.data)
        return result


@dataclass
class NotificationResult:
    """Outcome of one notify() call. reason is set when nothing was delivered."""

    delivered: bool
    reason: str | None = None
    notification: Notification | None = None


NotificationSink = Callable[[Notification], None]


class NotificationManager:
    """Filters, throttles and records notifications for every session."""

    def __init__(
        self,
        config: NotificationConfig | None = None,
        sink: NotificationSink | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or NotificationConfig()
        self.sink = sink
        self._clock = clock
        self._last_sent: dict[tuple[str, NotificationEvent], float] = {}
        self._history: list[Notification] = []

    def _min_severity(self) -> Severity:
        try:
            return Severity(self.config.min_severity)
        except ValueError:
            logger.debug(f"Unknown minimum severity {self.config.min_severity!r}, using warning")
            return Severity.WARNING

    def notify(
        self,
        session_id: str,
        event: NotificationEvent,
        message: str,
        title: str | None = None,
        severity: Severity | None = None,
        data: dict[str, Any] | None = None,
    ) -> NotificationResult:
        """
        Deliver a notification unless filtered or throttled.

        Args:
            session_id: Session the event belongs to
            event: Event kind
            message: Notice text, PII-filtered before delivery
            title: Overrides the event's default title
            severity: Overrides the event's default severity
            data: Structured details for the host

        Returns:
            NotificationResult; reason is "disabled", "filtered",
            "throttled" or "error" when nothing was delivered
        """
        if not self.config.enabled:
            return NotificationResult(False, "disabled")

        severity = severity or DEFAULT_SEVERITY[event]
        if severity.rank < self._min_severity().rank:
            return NotificationResult(False, "filtered")

        if self.config.enabled_events and event.value not in self.config.enabled_events:
            return NotificationResult(False, "filtered")

        key = (session_id, event)
        now = self._clock()
        last = self._last_sent.get(key)
        if last is not None and self.config.throttle_ms > 0:
            elapsed_ms = (now - last) * 1000
            if elapsed_ms < self.config.throttle_ms:
                logger.debug(f"Notification {event.value} throttled for {session_id} ({elapsed_ms:.0f}ms)")
                return NotificationResult(False, "throttled")

        notification = Notification(
            id=uuid.uuid4().hex,
            event=event,
            severity=severity,
            session_id=session_id,
            title=title or DEFAULT_TITLES[event],
            message=filter_pii(message),
            timestamp=now_iso(),
            data=dict(data or {}),
        )

        if self.sink is not None:
            try:
                self.sink(notification)
            except Exception as e:
                logger.error(f"Failed to deliver {event.value} notification for {session_id}: {e}")
                return NotificationResult(False, "error")

        self._last_sent[key] = now
        self._history.append(notification)
        if len(self._history) > MAX_HISTORY:
            del self._history[: len(self._history) - MAX_HISTORY]

        logger.info(f"Notification sent: {event.value} ({severity.value}) for {session_id}")
        return NotificationResult(True, notification=notification)

    # =========================================================================
    # Common events
    # =========================================================================

    def notify_session_started(self, session_id: str, persona_name: str) -> NotificationResult:
        return self.notify(
            session_id,
            NotificationEvent.SESSION_STARTED,
            f"{persona_name} is ready to assist.",
            data={"persona_name": persona_name},
        )

    def notify_workflow_complete(self, session_id: str, todos_completed: int = 0) -> NotificationResult:
        message = "Workflow completed successfully."
        if todos_completed:
            message = f"Workflow completed. {todos_completed} tasks finished."
        return self.notify(
            session_id,
            NotificationEvent.SESSION_COMPLETED,
            message,
            data={"todos_completed": todos_completed},
        )

    def notify_error_strike(self, session_id: str, strike_count: int, tool: str, error: str) -> NotificationResult:
        """Strikes 1 and 2 are only sent when notify_on_every_strike is set."""
        if not self.config.notify_on_every_strike and strike_count < 3:
            return NotificationResult(False, "filtered")
        return self.notify(
            session_id,
            NotificationEvent.ERROR_STRIKE,
            f"Error {strike_count}/3: {tool} failed. {error}",
            title=f"Error Strike {strike_count}/3",
            data={"strike_count": strike_count, "tool": tool},
        )

    def notify_error_escalation(self, session_id: str, strike_count: int, tool: str) -> NotificationResult:
        return self.notify(
            session_id,
            NotificationEvent.ERROR_ESCALATION,
            "3 consecutive errors detected. Escalating to Stilgar (Oracle agent) for guidance.",
            title="Stilgar Escalation",
            data={"strike_count": strike_count, "tool": tool},
        )

    def notify_error_recovery(self, session_id: str) -> NotificationResult:
        return self.notify(
            session_id,
            NotificationEvent.ERROR_RECOVERY,
            "Errors resolved. Resuming normal operation.",
        )

    def notify_security_blocked(self, session_id: str, tool: str, reason: str) -> NotificationResult:
        return self.notify(
            session_id,
            NotificationEvent.SECURITY_BLOCKED,
            f"Tool '{tool}' blocked: {reason}",
            data={"tool": tool, "reason": reason},
        )

    def notify_security_warning(self, session_id: str, tool: str, reason: str) -> NotificationResult:
        return self.notify(
            session_id,
            NotificationEvent.SECURITY_WARNING,
            f"Security warning for '{tool}': {reason}",
            data={"tool": tool, "reason": reason},
        )

    def notify_pending_todos(self, session_id: str, pending: list[str]) -> NotificationResult:
        if len(pending) == 1:
            message = f"1 task remaining: {pending[0]}"
        else:
            message = f"{len(pending)} tasks remaining before session can end."
        return self.notify(
            session_id,
            NotificationEvent.TODO_PENDING,
            message,
            data={"pending_count": len(pending), "pending_todos": pending[:MAX_PENDING_LISTED]},
        )

    def notify_phase_transition(self, session_id: str, from_phase: str, to_phase: str) -> NotificationResult:
        return self.notify(
            session_id,
            NotificationEvent.PHASE_TRANSITION,
            f"Workflow phase: {from_phase} -> {to_phase}",
            data={"from_phase": from_phase, "to_phase": to_phase},
        )

    def notify_compaction_completed(self, session_id: str) -> NotificationResult:
        return self.notify(
            session_id,
            NotificationEvent.COMPACTION_COMPLETED,
            "Context compacted. State preserved.",
        )

    def notify_delegation_completed(self, session_id: str, agent: str, announcement: str) -> NotificationResult:
        return self.notify(
            session_id,
            NotificationEvent.DELEGATION_COMPLETED,
            announcement,
            data={"agent": agent},
        )

    def notify_custom(
        self,
        session_id: str,
        title: str,
        message: str,
        severity: Severity = Severity.INFO,
        data: dict[str, Any] | None = None,
    ) -> NotificationResult:
        return self.notify(session_id, NotificationEvent.CUSTOM, message, title=title, severity=severity, data=data)

    # =========================================================================
    # History
    # =========================================================================

    def get_session_history(self, session_id: str) -> list[Notification]:
        return [n for n in self._history if n.session_id == session_id]

    def get_all_history(self) -> list[Notification]:
        return list(self._history)

    def clear_history(self) -> None:
        self._history.clear()

    def clear_session(self, session_id: str) -> int:
        """Forget throttle timestamps for a session. Returns how many were dropped."""
        keys = [key for key in self._last_sent if key[0] == session_id]
        for key in keys:
            del self._last_sent[key]
        if keys:
            logger.debug(f"Cleared {len(keys)} notification throttle(s) for {session_id}")
        return len(keys)

    def get_stats(self) -> dict[str, Any]:
        """Counts of delivered notifications by event type and severity."""
        by_type = {event.value: 0 for event in NotificationEvent}
        by_severity = {severity.value: 0 for severity in Severity}
        for notification in self._history:
            by_type[notification.event.value] += 1
            by_severity[notification.severity.value] += 1
        return {"total_sent": len(self._history), "by_type": by_type, "by_severity": by_severity}
