"""
Log Entry Data Structures for Atreides.

Defines structured entries for validation audits and session lifecycle
events. Each entry serializes to one JSONL line.
"""

import json
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any


def now_iso() -> str:
    """Get current time as ISO 8601 string."""
    return datetime.now().isoformat()


@dataclass
class SecurityAuditEntry:
    """One validation decision from the command/path pipeline."""

    timestamp: str  # ISO 8601
    session_id: str
    kind: str  # "command" or "path"
    action: str  # "allow", "ask", "deny"

    # Input is redacted and truncated before it gets here
    input: str = ""
    reason: str | None = None
    matched_pattern: str | None = None
    obfuscated: bool = False
    cached: bool = False
    latency_ms: float = 0.0

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(asdict(self), default=str)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SecurityAuditEntry":
        """Create from dictionary, ignoring unknown keys."""
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class SessionLogEntry:
    """Log entry for session lifecycle events."""

    timestamp: str  # ISO 8601
    session_id: str
    # "start", "end", "phase_change", "escalation", "resolution",
    # "stop_blocked", "compaction", "restore", "hook_error"
    event_type: str

    from_phase: str | None = None
    to_phase: str | None = None
    tool: str | None = None
    strike_count: int = 0
    pending_todos: int = 0
    detail: str = ""

    error: str | None = None
    error_type: str | None = None

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(asdict(self), default=str)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionLogEntry":
        """Create from dictionary, ignoring unknown keys."""
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})
