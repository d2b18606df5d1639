"""
Atreides - Exception Hierarchy

All Atreides-specific exceptions inherit from AtreidesError. Most of them
never reach the host: hooks convert them into a safe default and log them.
"""

from typing import Any


class AtreidesError(Exception):
    """Base exception for all Atreides errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# Configuration Errors
class ConfigError(AtreidesError):
    """Raised when configuration is invalid or unreadable."""

    pass


class ConfigurationMissingError(ConfigError):
    """Raised when a session must be created but no default config exists."""

    def __init__(self, session_id: str):
        super().__init__(
            "Cannot initialize session: no configuration available",
            {"session_id": session_id},
        )
        self.session_id = session_id


# Workflow Errors
class StateTransitionError(AtreidesError):
    """Raised when a strict phase transition is not in the transition table.

    Includes the current phase and the attempted target phase for debugging.
    """

    def __init__(self, message: str, from_phase: str, to_phase: str):
        super().__init__(message, {"from_phase": from_phase, "to_phase": to_phase})
        self.from_phase = from_phase
        self.to_phase = to_phase


# Security Errors
class SecurityValidationError(AtreidesError):
    """Raised inside the validation pipeline; always converted to a deny."""

    pass


# Hook Errors
class HookExecutionError(AtreidesError):
    """Wraps an unexpected failure inside a host hook."""

    def __init__(self, hook: str, cause: BaseException):
        super().__init__(
            f"Hook '{hook}' failed: {cause}",
            {"hook": hook, "error_type": type(cause).__name__},
        )
        self.hook = hook
        self.cause = cause


# Compaction Errors
class CompactionParseError(AtreidesError):
    """Raised when a preserved-state block is malformed."""

    pass
