"""
Logging Configuration for Atreides.

Defines log paths, rotation settings and levels for the structured
JSONL streams.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class LogConfig:
    """Configuration for the Atreides JSONL logs."""

    log_dir: Path = field(default_factory=lambda: Path.home() / ".atreides" / "logs")

    # Rotation
    max_file_size_bytes: int = 5 * 1024 * 1024  # 5MB
    backup_count: int = 3

    # Log levels: DEBUG, INFO, WARNING, ERROR
    security_level: str = "INFO"
    session_level: str = "INFO"

    # Scrub emails, tokens and home paths from free-text session fields
    pii_filter_enabled: bool = True

    @classmethod
    def from_env(cls) -> "LogConfig":
        """Load config from ATREIDES_LOG_* environment variables."""
        config = cls()

        if level := os.environ.get("ATREIDES_LOG_LEVEL"):
            config.security_level = level
            config.session_level = level

        if log_dir := os.environ.get("ATREIDES_LOG_DIR"):
            config.log_dir = Path(log_dir).expanduser()

        if max_size := os.environ.get("ATREIDES_LOG_MAX_SIZE_MB"):
            try:
                config.max_file_size_bytes = int(max_size) * 1024 * 1024
            except ValueError:
                pass

        if os.environ.get("ATREIDES_LOG_PII_FILTER", "").lower() in ("0", "false", "no", "off"):
            config.pii_filter_enabled = False

        return config

    @property
    def security_log_path(self) -> Path:
        """Path to the validation audit log."""
        return self.log_dir / "security.jsonl"

    @property
    def session_log_path(self) -> Path:
        """Path to the session lifecycle log."""
        return self.log_dir / "session.jsonl"


_config: LogConfig | None = None


def get_config() -> LogConfig:
    """Get the global log config, initializing from env if needed."""
    global _config
    if _config is None:
        _config = LogConfig.from_env()
    return _config


def set_config(config: LogConfig) -> None:
    """Set a custom log config (used by tests and the CLI)."""
    global _config
    _config = config
