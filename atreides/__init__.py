"""
Atreides - per-session orchestration core for AI coding assistants.

Validates every tool call the assistant makes, tracks workflow phase,
escalates repeated failures, gates session stop on open todos, and
preserves that state across context compaction.
"""

__version__ = "0.1.0"

from atreides.exceptions import (
    AtreidesError,
    CompactionParseError,
    ConfigError,
    ConfigurationMissingError,
    HookExecutionError,
    SecurityValidationError,
    StateTransitionError,
)

__all__ = [
    "__version__",
    "AtreidesError",
    "ConfigError",
    "ConfigurationMissingError",
    "StateTransitionError",
    "SecurityValidationError",
    "HookExecutionError",
    "CompactionParseError",
]
