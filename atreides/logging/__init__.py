"""
Atreides Logging System.

Provides structured JSONL logging for:
- Validation audits (every command/path decision, input redacted)
- Session lifecycle events (start/end, phase changes, escalations,
  blocked stops, compaction)

Usage:
    from atreides.logging import security_logger, SecurityAuditEntry, now_iso

    entry = SecurityAuditEntry(
        timestamp=now_iso(),
        session_id=get_session_id(),
        kind="command",
        action="deny",
        ...
    )
    security_logger.info(entry.to_json())

Logs are written to ~/.atreides/logs/ (ATREIDES_LOG_DIR overrides):
    - security.jsonl: validation audit trail
    - session.jsonl: session lifecycle events
"""

import logging
import threading
from typing import Any

from .config import LogConfig, get_config, set_config
from .entries import SecurityAuditEntry, SessionLogEntry, now_iso
from .handlers import create_jsonl_logger
from .privacy import filter_pii

# Thread-local storage for the session currently being handled
_context = threading.local()


def set_session_id(session_id: str) -> None:
    """Set the current session ID for log correlation."""
    _context.session_id = session_id


def get_session_id() -> str:
    """Get the current session ID, or 'unknown' if not set."""
    return getattr(_context, "session_id", "unknown")


# Loggers are built on first use so importing never touches the filesystem
_security_logger: logging.Logger | None = None
_session_logger: logging.Logger | None = None
_bound_config: LogConfig | None = None
_init_lock = threading.Lock()


def _ensure_loggers() -> None:
    """Initialize loggers on first use, or again after set_config()."""
    global _security_logger, _session_logger, _bound_config

    config = get_config()
    if _bound_config is config:
        return

    with _init_lock:
        if _bound_config is config:
            return

        _security_logger = create_jsonl_logger(
            "atreides.audit.security",
            config.security_log_path,
            level=config.security_level,
            max_bytes=config.max_file_size_bytes,
            backup_count=config.backup_count,
        )
        _session_logger = create_jsonl_logger(
            "atreides.audit.session",
            config.session_log_path,
            level=config.session_level,
            max_bytes=config.max_file_size_bytes,
            backup_count=config.backup_count,
        )
        _bound_config = config


class _LazyLogger:
    """Lazy wrapper that initializes the actual logger on first use."""

    def __init__(self, name: str):
        self._name = name

    def _get_logger(self) -> Any:
        _ensure_loggers()
        if self._name == "security":
            return _security_logger
        return _session_logger

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._get_logger().debug(msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._get_logger().info(msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._get_logger().warning(msg, *args, **kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._get_logger().error(msg, *args, **kwargs)


security_logger = _LazyLogger("security")
session_logger = _LazyLogger("session")


def log_session_event(event_type: str, session_id: str | None = None, **fields: Any) -> None:
    """
    Write one SessionLogEntry, scrubbing free-text fields.

    Args:
        event_type: Lifecycle event name
        session_id: Session the event belongs to (defaults to the current one)
        **fields: Any other SessionLogEntry field
    """
    entry = SessionLogEntry(
        timestamp=now_iso(),
        session_id=session_id or get_session_id(),
        event_type=event_type,
        **fields,
    )
    if get_config().pii_filter_enabled:
        entry.detail = filter_pii(entry.detail)
        if entry.error:
            entry.error = filter_pii(entry.error)

    if event_type in ("hook_error", "escalation"):
        session_logger.warning(entry.to_json())
    else:
        session_logger.info(entry.to_json())


__all__ = [
    # Loggers
    "security_logger",
    "session_logger",
    "log_session_event",
    # Log entries
    "SecurityAuditEntry",
    "SessionLogEntry",
    # Utilities
    "now_iso",
    "filter_pii",
    "get_session_id",
    "set_session_id",
    # Config
    "LogConfig",
    "get_config",
    "set_config",
]
