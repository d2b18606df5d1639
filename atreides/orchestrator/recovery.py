"""
Atreides - Three-Strike Error Recovery

Counts consecutive failing tool executions per session:

    strike 1  -> logged
    strike 2  -> suggested (category-specific recovery steps)
    strike 3+ -> escalated (escalation message, session marked escalated)

The first failure-free execution resets the count. An active escalation
is then marked resolved but its record is kept for audit.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from atreides.logging import log_session_event
from atreides.session import SessionStore
from atreides.state import ErrorRecoveryState, LastErrorInfo

logger = logging.getLogger(__name__)

ESCALATION_THRESHOLD = 3
MAX_ERROR_OUTPUT = 500


class RecoveryAction(Enum):
    """What the protocol did for one tool execution."""

    NONE = "none"
    RESET = "reset"
    LOGGED = "logged"
    SUGGESTED = "suggested"
    ESCALATED = "escalated"


# =============================================================================
# FAILURE INDICATORS (pattern, flags, category), first match wins
# =============================================================================

I = re.IGNORECASE

ERROR_PATTERNS: list[tuple[str, int, str]] = [
    # Shell
    (r"command not found", I, "command"),
    (r"permission denied", I, "permission"),
    (r"no such file or directory", I, "file"),
    (r"ENOENT", I, "file"),
    (r"EACCES", I, "permission"),
    (r"EPERM", I, "permission"),
    # Modules and imports
    (r"cannot find module", I, "module"),
    (r"module not found", I, "module"),
    (r"import .* not found", I, "module"),
    # Build
    (r"failed to compile", I, "build"),
    (r"compilation failed", I, "build"),
    (r"build failed", I, "build"),
    # Tests
    (r"test.*failed", I, "test"),
    (r"tests? (failed|failing)", I, "test"),
    (r"FAILED", 0, "test"),
    # Runtime exceptions
    (r"SyntaxError", I, "syntax"),
    (r"TypeError", I, "type"),
    (r"ReferenceError", I, "type"),
    (r"null pointer", I, "type"),
    (r"segmentation fault", I, "memory"),
    (r"undefined is not", I, "type"),
    (r"\bexception\b", I, "generic"),
    (r"Exception:", 0, "generic"),
    (r"traceback \(most recent call last\)", I, "generic"),
    (r"Traceback", 0, "generic"),
    # Network
    (r"connection refused", I, "network"),
    (r"ECONNREFUSED", I, "network"),
    (r"ETIMEDOUT", I, "network"),
    # Resources
    (r"out of memory", I, "memory"),
    (r"ENOMEM", I, "memory"),
    # Generic markers; "error: 0" and Error.prototype are not failures
    (r"\berror:(?!\s*0\b)", I, "generic"),
    (r"\bERROR:(?!\s*None)", 0, "generic"),
    (r"\bError\b(?!\.prototype)", 0, "generic"),
    (r"\bfatal error\b", I, "generic"),
]

ERROR_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(pattern, flags), category) for pattern, flags, category in ERROR_PATTERNS
]


@dataclass(frozen=True)
class RecoverySuggestion:
    category: str
    message: str
    suggestions: tuple[str, ...]


RECOVERY_SUGGESTIONS: dict[str, RecoverySuggestion] = {
    "command": RecoverySuggestion(
        "command",
        "Command not found",
        (
            "Verify the command is installed and available in PATH",
            "Check for typos in the command name",
            "Install the required package or tool",
            "Use 'which <command>' or 'command -v <command>' to check availability",
        ),
    ),
    "permission": RecoverySuggestion(
        "permission",
        "Permission denied",
        (
            "Check file/directory permissions with 'ls -la'",
            "Verify you have the necessary access rights",
            "Consider if sudo is appropriate (use with caution)",
            "Check ownership with 'stat <file>'",
        ),
    ),
    "file": RecoverySuggestion(
        "file",
        "File or directory not found",
        (
            "Verify the file path exists",
            "Check for typos in the path",
            "Use 'ls' or 'find' to locate the file",
            "Ensure any required files are created first",
        ),
    ),
    "module": RecoverySuggestion(
        "module",
        "Module not found",
        (
            "Run 'npm install' or equivalent package manager command",
            "Check if the module is in package.json/requirements.txt",
            "Verify import path is correct (relative vs absolute)",
            "Check if node_modules/venv is properly set up",
        ),
    ),
    "build": RecoverySuggestion(
        "build",
        "Build/compilation failed",
        (
            "Review the error output for specific issues",
            "Check for syntax errors in recently modified files",
            "Ensure all dependencies are installed",
            "Try cleaning the build cache and rebuilding",
        ),
    ),
    "test": RecoverySuggestion(
        "test",
        "Test failure detected",
        (
            "Review failing test output for assertion details",
            "Check if test expectations match implementation",
            "Verify test fixtures and mock data are correct",
            "Run tests in isolation to identify conflicts",
        ),
    ),
    "syntax": RecoverySuggestion(
        "syntax",
        "Syntax error detected",
        (
            "Check for missing brackets, parentheses, or quotes",
            "Verify proper indentation (especially Python)",
            "Look for unclosed strings or template literals",
            "Run a linter to identify syntax issues",
        ),
    ),
    "type": RecoverySuggestion(
        "type",
        "Type error detected",
        (
            "Check for null/undefined access without guards",
            "Verify variable types match expected usage",
            "Add null checks or optional chaining",
            "Review function argument types",
        ),
    ),
    "network": RecoverySuggestion(
        "network",
        "Network/connection error",
        (
            "Verify the service is running and accessible",
            "Check network connectivity and firewall rules",
            "Confirm the correct host and port are being used",
            "Increase timeout values if the service is slow",
        ),
    ),
    "memory": RecoverySuggestion(
        "memory",
        "Memory/resource error",
        (
            "Check for memory leaks or unbounded growth",
            "Reduce batch sizes or process in chunks",
            "Increase available memory limits",
            "Review for infinite loops or recursion",
        ),
    ),
    "generic": RecoverySuggestion(
        "generic",
        "Error detected",
        (
            "Review the full error output for details",
            "Check recent changes that might have caused this",
            "Search for the error message online for solutions",
            "Consider reverting recent changes if unclear",
        ),
    ),
}


@dataclass
class ErrorDetection:
    """Result of scanning one tool output."""

    detected: bool
    category: str | None = None
    matched_pattern: str | None = None


@dataclass
class RecoveryResult:
    """What check() decided for one tool execution."""

    error_detected: bool
    strike_count: int
    action: RecoveryAction
    category: str | None = None
    suggestion: RecoverySuggestion | None = None
    message: str | None = None


def has_structural_error(output: Any) -> bool:
    """True for a truthy error field or a non-zero integer exit code."""
    if not isinstance(output, dict):
        return False
    if output.get("error"):
        return True
    for key in ("exitCode", "exit_code", "returncode"):
        code = output.get(key)
        if isinstance(code, int) and not isinstance(code, bool) and code != 0:
            return True
    return False


def extract_output_text(output: Any) -> str:
    """
    Flatten a tool result into text for pattern matching.

    Joins stdout, stderr, output, message, then the error message and
    stack, in that order, one per line.
    """
    if output is None:
        return ""
    if isinstance(output, str):
        return output
    if isinstance(output, (list, tuple)):
        return "\n".join(extract_output_text(item) for item in output)
    if not isinstance(output, dict):
        return str(output)

    parts: list[str] = []
    for key in ("stdout", "stderr", "output", "message"):
        value = output.get(key)
        if isinstance(value, str) and value:
            parts.append(value)

    error = output.get("error")
    if isinstance(error, str) and error:
        parts.append(error)
    elif isinstance(error, dict):
        for key in ("message", "stack"):
            value = error.get(key)
            if isinstance(value, str) and value:
                parts.append(value)

    return "\n".join(parts)


def detect_error(output: Any) -> ErrorDetection:
    """
    Decide whether a tool result signals a failure, and classify it.

    Structural signals count even when no text pattern matches; the
    category then comes from the text if possible, otherwise "generic".
    """
    text = extract_output_text(output)
    for pattern, category in ERROR_RULES:
        if pattern.search(text):
            return ErrorDetection(True, category, pattern.pattern)

    if has_structural_error(output):
        return ErrorDetection(True, "generic")
    return ErrorDetection(False)


def get_suggestion(category: str | None) -> RecoverySuggestion:
    return RECOVERY_SUGGESTIONS.get(category or "generic", RECOVERY_SUGGESTIONS["generic"])


def format_recovery_suggestion(suggestion: RecoverySuggestion) -> str:
    """Strike-two message with numbered recovery steps."""
    lines = [
        f"[ERROR RECOVERY - {suggestion.message}]",
        "",
        "Suggested actions:",
        *(f"  {i}. {s}" for i, s in enumerate(suggestion.suggestions, start=1)),
        "",
        "If issues persist, one more error will trigger Stilgar escalation.",
    ]
    return "\n".join(lines)


def format_escalation_message(
    tool: str,
    suggestion: RecoverySuggestion,
    last_error: LastErrorInfo | None,
) -> str:
    """Strike-three message bundling category, error context and suggestions."""
    if last_error and last_error.output:
        context = f"  {last_error.output[:MAX_ERROR_OUTPUT]}"
    else:
        context = "  (No output captured)"

    lines = [
        "[STILGAR ESCALATION - 3-Strike Protocol Triggered]",
        "",
        "The session has encountered 3+ consecutive errors.",
        f"Error category: {suggestion.category}",
        f"Triggering tool: {tool}",
        "",
        "Error context:",
        context,
        "",
        "Recommended approach:",
        "  1. Analyze the error pattern and root cause",
        "  2. Consider alternative approaches",
        "  3. Review recent changes for potential issues",
        "  4. If blocked, ask the user for clarification or guidance",
        "",
        "Standard recovery suggestions:",
        *(f"  - {s}" for s in suggestion.suggestions),
    ]
    return "\n".join(lines)


class ErrorRecoveryProtocol:
    """Per-session strike counter over a SessionStore."""

    def __init__(self, store: SessionStore):
        self.store = store

    def check(self, tool: str, output: Any, session_id: str) -> RecoveryResult:
        """
        Inspect one tool result and advance or reset the strike counter.

        Args:
            tool: Tool that produced the output
            output: Tool result (dict, string, list...)
            session_id: Session identifier

        Returns:
            RecoveryResult describing the action taken
        """
        detection = detect_error(output)
        state = self.store.get_or_none(session_id)
        if state is None:
            return RecoveryResult(detection.detected, 0, RecoveryAction.NONE, detection.category)

        if not detection.detected:
            return self._on_success(session_id)

        strikes = self.store.increment_error_count(session_id)
        category = detection.category or "generic"
        suggestion = get_suggestion(category)
        state.last_error = LastErrorInfo(
            timestamp=datetime.now(),
            tool=tool,
            output=extract_output_text(output)[:MAX_ERROR_OUTPUT],
            category=category,
        )

        if strikes == 1:
            logger.info(f"Error detected in {session_id} (strike 1, {category}) from {tool}")
            return RecoveryResult(True, strikes, RecoveryAction.LOGGED, category, suggestion)

        if strikes == 2:
            logger.info(f"Second consecutive error in {session_id} ({category}), suggesting recovery")
            return RecoveryResult(
                True,
                strikes,
                RecoveryAction.SUGGESTED,
                category,
                suggestion,
                format_recovery_suggestion(suggestion),
            )

        recovery = state.error_recovery
        if recovery is None or not recovery.escalated:
            recovery = ErrorRecoveryState(
                escalated=True,
                escalated_at=datetime.now(),
                triggering_tool=tool,
            )
            state.error_recovery = recovery
            logger.warning(f"Session {session_id} escalated after {strikes} consecutive errors ({tool})")
            log_session_event("escalation", session_id, tool=tool, strike_count=strikes, detail=category)
        recovery.strike_count = strikes

        return RecoveryResult(
            True,
            strikes,
            RecoveryAction.ESCALATED,
            category,
            suggestion,
            format_escalation_message(tool, suggestion, state.last_error),
        )

    def _on_success(self, session_id: str) -> RecoveryResult:
        state = self.store.get_or_none(session_id)
        previous = state.error_count if state else 0
        self.store.reset_error_count(session_id)

        recovery = state.error_recovery if state else None
        if recovery is not None and recovery.escalated:
            recovery.escalated = False
            recovery.resolved_at = datetime.now()
            logger.info(f"Escalation resolved in {session_id}")
            log_session_event("resolution", session_id, tool=recovery.triggering_tool, strike_count=previous)

        action = RecoveryAction.RESET if previous > 0 else RecoveryAction.NONE
        return RecoveryResult(False, 0, action)

    def get_strike_count(self, session_id: str) -> int:
        state = self.store.get_or_none(session_id)
        return state.error_count if state else 0

    def is_escalated(self, session_id: str) -> bool:
        state = self.store.get_or_none(session_id)
        return bool(state and state.error_recovery and state.error_recovery.escalated)

    def reset(self, session_id: str) -> None:
        """Clear strikes, escalation record and last error."""
        self.store.reset_error_count(session_id)
        if state := self.store.get_or_none(session_id):
            state.error_recovery = None
            state.last_error = None
