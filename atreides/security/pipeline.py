"""
Atreides - Command Validation Pipeline

Normalizes and classifies commands and file paths into allow/ask/deny.
Validation fails closed: any exception during classification denies.
Every call writes one redacted audit entry to security.jsonl.
"""

import logging
import re
import time
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Any

from atreides.config import SecurityConfig
from atreides.exceptions import SecurityValidationError
from atreides.logging import SecurityAuditEntry, get_session_id, now_iso, security_logger
from atreides.security.normalize import (
    collapse_whitespace,
    normalize_command,
    normalize_path,
    was_obfuscated,
)
from atreides.security.patterns import (
    BLOCKED_COMMAND_PATTERNS,
    BLOCKED_FILE_PATTERNS,
    BLOCKED_PATH_PATTERNS,
    TRAVERSAL_PATTERNS,
    WARNING_COMMAND_PATTERNS,
    compile_patterns,
    compile_user_patterns,
    first_match,
)
from atreides.security.sanitize import sanitize_command_for_logging

logger = logging.getLogger(__name__)

DEFAULT_CACHE_SIZE = 100

COMMAND_TOOLS = {"bash", "shell", "exec"}
FILE_TOOLS = {"read", "write", "edit", "multiedit", "glob", "grep", "notebookedit", "list"}

COMMAND_KEYS = ("command", "cmd", "script")
PATH_KEYS = (
    "file_path",
    "filePath",
    "notebook_path",
    "notebookPath",
    "path",
    "source",
    "destination",
    "src",
    "dest",
)

REASON_COMMAND_BLOCKED = "Command matches blocked security pattern"
REASON_COMMAND_WARNING = "Command requires user confirmation"
REASON_COMMAND_ERROR = "Validation error - command denied for safety"
REASON_TRAVERSAL = "Path traversal attempt detected"
REASON_FILE_BLOCKED = "File matches blocked security pattern"
REASON_PATH_BLOCKED = "Path matches blocked security pattern"
REASON_PATH_ERROR = "Validation error - file access denied for safety"


class ValidationAction(Enum):
    """Outcome of a validation."""

    ALLOW = "allow"
    ASK = "ask"
    DENY = "deny"


@dataclass(frozen=True)
class ValidationResult:
    """Decision for one command or path."""

    action: ValidationAction
    reason: str | None = None
    matched_pattern: str | None = None
    normalized_input: str | None = None
    obfuscated: bool = False

    @property
    def allowed(self) -> bool:
        return self.action == ValidationAction.ALLOW

    @property
    def denied(self) -> bool:
        return self.action == ValidationAction.DENY

    def to_dict(self) -> dict[str, Any]:
        """Host-facing dictionary; optional fields omitted when empty."""
        data: dict[str, Any] = {"action": self.action.value}
        if self.reason:
            data["reason"] = self.reason
        if self.matched_pattern:
            data["matchedPattern"] = self.matched_pattern
        if self.normalized_input is not None:
            data["normalizedInput"] = self.normalized_input
        return data

    @classmethod
    def allow(cls, normalized_input: str | None = None, obfuscated: bool = False) -> "ValidationResult":
        return cls(ValidationAction.ALLOW, normalized_input=normalized_input, obfuscated=obfuscated)

    @classmethod
    def deny(cls, reason: str, pattern: str | None = None, **kwargs: Any) -> "ValidationResult":
        return cls(ValidationAction.DENY, reason=reason, matched_pattern=pattern, **kwargs)


@dataclass
class SecurityStats:
    """Running validation statistics."""

    commands_validated: int = 0
    commands_blocked: int = 0
    commands_warned: int = 0
    files_validated: int = 0
    files_blocked: int = 0
    obfuscation_detected: int = 0
    cache_hits: int = 0
    total_latency_ms: float = 0.0

    @property
    def total_validations(self) -> int:
        return self.commands_validated + self.files_validated

    @property
    def avg_latency_ms(self) -> float:
        if not self.total_validations:
            return 0.0
        return self.total_latency_ms / self.total_validations


class LRUCache:
    """Fixed-capacity least-recently-used map."""

    def __init__(self, capacity: int = DEFAULT_CACHE_SIZE):
        self.capacity = capacity
        self._data: OrderedDict[str, ValidationResult] = OrderedDict()

    def get(self, key: str) -> ValidationResult | None:
        value = self._data.get(key)
        if value is not None:
            self._data.move_to_end(key)
        return value

    def put(self, key: str, value: ValidationResult) -> None:
        self._data[key] = value
        self._data.move_to_end(key)
        while len(self._data) > self.capacity:
            self._data.popitem(last=False)

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: str) -> bool:
        return key in self._data


class CommandValidationPipeline:
    """
    Validates commands and file paths against the security catalogues.

    Classification is a pure function of the input string and the
    configured pattern tables, so results are cached per raw input.
    """

    def __init__(self, config: SecurityConfig | None = None, cache_size: int = DEFAULT_CACHE_SIZE):
        """
        Initialize the pipeline.

        Args:
            config: Security config whose user patterns extend the catalogues
            cache_size: Capacity of each of the command and path caches
        """
        config = config or SecurityConfig()
        self._blocked = compile_patterns(BLOCKED_COMMAND_PATTERNS) + compile_user_patterns(
            config.blocked_patterns
        )
        self._warning = compile_patterns(WARNING_COMMAND_PATTERNS) + compile_user_patterns(
            config.warning_patterns
        )
        self._blocked_files = compile_patterns(BLOCKED_FILE_PATTERNS) + compile_user_patterns(
            config.blocked_files
        )
        self._blocked_paths = compile_patterns(BLOCKED_PATH_PATTERNS)
        self._traversal = compile_patterns(TRAVERSAL_PATTERNS)

        self._command_cache = LRUCache(cache_size)
        self._path_cache = LRUCache(cache_size)
        self._stats = SecurityStats()

    # =========================================================================
    # Public API
    # =========================================================================

    def validate_command(self, command: str, session_id: str | None = None) -> ValidationResult:
        """
        Classify a shell command.

        Args:
            command: Raw command text
            session_id: Session for the audit entry

        Returns:
            ValidationResult; deny on any internal error
        """
        start = time.perf_counter()
        result = self._command_cache.get(command) if isinstance(command, str) else None
        cached = result is not None

        if result is None:
            try:
                result = self._classify_command(command)
                self._command_cache.put(command, result)
            except Exception as e:
                logger.error(f"Command validation failed, denying: {e}")
                result = ValidationResult.deny(REASON_COMMAND_ERROR)

        self._record("command", command, result, start, cached, session_id)
        return result

    def validate_path(self, path: str, session_id: str | None = None) -> ValidationResult:
        """
        Classify a file path.

        Traversal sequences are rejected before any pattern matching.

        Args:
            path: Raw file path
            session_id: Session for the audit entry

        Returns:
            ValidationResult; deny on any internal error
        """
        start = time.perf_counter()
        result = self._path_cache.get(path) if isinstance(path, str) else None
        cached = result is not None

        if result is None:
            try:
                result = self._classify_path(path)
                self._path_cache.put(path, result)
            except Exception as e:
                logger.error(f"Path validation failed, denying: {e}")
                result = ValidationResult.deny(REASON_PATH_ERROR)

        self._record("path", path, result, start, cached, session_id)
        return result

    def validate_tool_input(
        self,
        tool: str,
        tool_input: Any,
        session_id: str | None = None,
    ) -> ValidationResult:
        """
        Route a tool call to command or path validation.

        Shell tools validate their command; file tools validate every
        path-like argument and return the first non-allow result. Other
        tools are allowed.
        """
        name = tool.lower()
        try:
            if name in COMMAND_TOOLS:
                command = extract_command(tool_input)
                if command is None:
                    return ValidationResult.allow()
                return self.validate_command(command, session_id)

            if name in FILE_TOOLS:
                result = ValidationResult.allow()
                for path in extract_paths(tool_input):
                    result = self.validate_path(path, session_id)
                    if not result.allowed:
                        return result
                return result
        except Exception as e:
            logger.error(f"Tool input validation failed for {tool}, denying: {e}")
            return ValidationResult.deny(
                REASON_COMMAND_ERROR if name in COMMAND_TOOLS else REASON_PATH_ERROR
            )

        return ValidationResult.allow()

    def get_stats(self) -> SecurityStats:
        """Get a copy of the running statistics."""
        return SecurityStats(**vars(self._stats))

    def reset_stats(self) -> None:
        self._stats = SecurityStats()

    def clear_cache(self) -> None:
        self._command_cache.clear()
        self._path_cache.clear()

    # =========================================================================
    # Classification
    # =========================================================================

    def _classify_command(self, command: str) -> ValidationResult:
        if not isinstance(command, str):
            raise SecurityValidationError("Command must be a string", {"type": type(command).__name__})

        normalized = normalize_command(command)
        obfuscated = was_obfuscated(command, normalized)
        if not normalized:
            return ValidationResult.allow(normalized, obfuscated)

        if pattern := first_match(self._blocked, normalized, collapse_whitespace(command)):
            return ValidationResult.deny(
                REASON_COMMAND_BLOCKED,
                pattern.pattern,
                normalized_input=normalized,
                obfuscated=obfuscated,
            )

        if pattern := first_match(self._warning, normalized):
            return ValidationResult(
                ValidationAction.ASK,
                reason=REASON_COMMAND_WARNING,
                matched_pattern=pattern.pattern,
                normalized_input=normalized,
                obfuscated=obfuscated,
            )

        return ValidationResult.allow(normalized, obfuscated)

    def _classify_path(self, path: str) -> ValidationResult:
        if not isinstance(path, str):
            raise SecurityValidationError("Path must be a string", {"type": type(path).__name__})

        normalized = normalize_path(path)
        if pattern := first_match(self._traversal, normalized, path):
            return ValidationResult.deny(REASON_TRAVERSAL, pattern.pattern, normalized_input=normalized)

        cleaned = re.sub(r"/\./", "/", normalized)
        cleaned = re.sub(r"^(\./)+", "", cleaned)

        if pattern := first_match(self._blocked_files, cleaned, path):
            return ValidationResult.deny(REASON_FILE_BLOCKED, pattern.pattern, normalized_input=cleaned)

        if pattern := first_match(self._blocked_paths, cleaned, path):
            return ValidationResult.deny(REASON_PATH_BLOCKED, pattern.pattern, normalized_input=cleaned)

        return ValidationResult.allow(cleaned)

    # =========================================================================
    # Audit
    # =========================================================================

    def _record(
        self,
        kind: str,
        raw: Any,
        result: ValidationResult,
        start: float,
        cached: bool,
        session_id: str | None,
    ) -> None:
        latency_ms = (time.perf_counter() - start) * 1000

        stats = self._stats
        stats.total_latency_ms += latency_ms
        if cached:
            stats.cache_hits += 1
        if result.obfuscated:
            stats.obfuscation_detected += 1
        if kind == "command":
            stats.commands_validated += 1
            if result.action == ValidationAction.DENY:
                stats.commands_blocked += 1
            elif result.action == ValidationAction.ASK:
                stats.commands_warned += 1
        else:
            stats.files_validated += 1
            if result.action == ValidationAction.DENY:
                stats.files_blocked += 1

        logged_input = sanitize_command_for_logging(raw if isinstance(raw, str) else repr(raw))
        if result.action == ValidationAction.DENY:
            logger.warning(f"Blocked {kind}: {logged_input} ({result.reason})")

        entry = SecurityAuditEntry(
            timestamp=now_iso(),
            session_id=session_id or get_session_id(),
            kind=kind,
            action=result.action.value,
            input=logged_input,
            reason=result.reason,
            matched_pattern=result.matched_pattern,
            obfuscated=result.obfuscated,
            cached=cached,
            latency_ms=round(latency_ms, 3),
        )
        if result.action == ValidationAction.DENY:
            security_logger.warning(entry.to_json())
        else:
            security_logger.info(entry.to_json())


def extract_command(tool_input: Any) -> str | None:
    """Pull the command text out of a shell tool's input."""
    if isinstance(tool_input, str):
        return tool_input
    if isinstance(tool_input, dict):
        for key in COMMAND_KEYS:
            value = tool_input.get(key)
            if value is not None:
                return value if isinstance(value, str) else str(value)
    return None


def extract_paths(tool_input: Any) -> list[str]:
    """
    Collect path-like arguments of a file tool.

    A glob/grep "pattern" is only treated as a path when no other path
    argument is present.
    """
    if isinstance(tool_input, str):
        return [tool_input]
    if not isinstance(tool_input, dict):
        return []

    paths = [str(tool_input[key]) for key in PATH_KEYS if tool_input.get(key)]

    url = tool_input.get("url")
    if isinstance(url, str) and url.startswith("file://"):
        paths.append(url[len("file://"):])

    if not paths and tool_input.get("pattern"):
        paths.append(str(tool_input["pattern"]))
    return paths
