"""Per-session trackers and the managers that report on them."""

from atreides.orchestrator.compaction import CompactionPreservation, PreservedState, format_block, parse_block
from atreides.orchestrator.interceptor import ToolExecutionInterceptor, extract_result_status
from atreides.orchestrator.notifications import Notification, NotificationManager
from atreides.orchestrator.recovery import ErrorRecoveryProtocol, RecoveryAction, RecoveryResult
from atreides.orchestrator.think_mode import ThinkModeManager, ThinkModeState
from atreides.orchestrator.todos import StopDecision, TodoItem, TodoTracker
from atreides.orchestrator.workflow import WorkflowPhaseEngine, classify_intent

__all__ = [
    "CompactionPreservation",
    "ErrorRecoveryProtocol",
    "Notification",
    "NotificationManager",
    "PreservedState",
    "RecoveryAction",
    "RecoveryResult",
    "StopDecision",
    "ThinkModeManager",
    "ThinkModeState",
    "TodoItem",
    "TodoTracker",
    "ToolExecutionInterceptor",
    "WorkflowPhaseEngine",
    "classify_intent",
    "extract_result_status",
    "format_block",
    "parse_block",
]
