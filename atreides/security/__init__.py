"""Command and path validation."""

from atreides.security.normalize import normalize_command, normalize_path, was_obfuscated
from atreides.security.pipeline import (
    CommandValidationPipeline,
    SecurityStats,
    ValidationAction,
    ValidationResult,
)
from atreides.security.sanitize import sanitize_command_for_logging, sanitize_log_output

__all__ = [
    "CommandValidationPipeline",
    "SecurityStats",
    "ValidationAction",
    "ValidationResult",
    "normalize_command",
    "normalize_path",
    "was_obfuscated",
    "sanitize_command_for_logging",
    "sanitize_log_output",
]
