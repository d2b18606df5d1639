"""
Atreides - Configuration Management

Loads the "atreides" section of a project's opencode.json (or
.atreides/config.json), merges it with defaults, and applies environment
overrides. Invalid fields are reported and replaced by their defaults.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from atreides.exceptions import ConfigError

logger = logging.getLogger(__name__)

# Configuration file locations, relative to the project directory
HOST_CONFIG_FILE = "opencode.json"
LOCAL_CONFIG_FILE = Path(".atreides") / "config.json"
CONFIG_SECTION = "atreides"

DEFAULT_PERSONA_NAME = "Muad'Dib"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class IdentityConfig:
    """Persona settings used in prompt headers and the compaction block."""

    persona_name: str = DEFAULT_PERSONA_NAME
    response_prefix: bool = True
    delegation_announcements: bool = True
    agent_display_names: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to camelCase dictionary for JSON serialization."""
        return {
            "personaName": self.persona_name,
            "responsePrefix": self.response_prefix,
            "delegationAnnouncements": self.delegation_announcements,
            "agentDisplayNames": dict(self.agent_display_names),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IdentityConfig":
        """Create IdentityConfig from a camelCase or snake_case dictionary."""
        return cls(
            persona_name=_pick(data, "personaName", "persona_name", DEFAULT_PERSONA_NAME),
            response_prefix=_pick(data, "responsePrefix", "response_prefix", True),
            delegation_announcements=_pick(
                data, "delegationAnnouncements", "delegation_announcements", True
            ),
            agent_display_names=dict(_pick(data, "agentDisplayNames", "agent_display_names", {})),
        )


@dataclass
class WorkflowConfig:
    """Toggles for phase tracking, the todo gate and auto-escalation."""

    enable_phase_tracking: bool = True
    strict_todo_enforcement: bool = True
    auto_escalate_on_error: bool = True

    def to_dict(self) -> dict[str, Any]:
        """Convert to camelCase dictionary for JSON serialization."""
        return {
            "enablePhaseTracking": self.enable_phase_tracking,
            "strictTodoEnforcement": self.strict_todo_enforcement,
            "autoEscalateOnError": self.auto_escalate_on_error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorkflowConfig":
        """Create WorkflowConfig from a camelCase or snake_case dictionary."""
        return cls(
            enable_phase_tracking=_pick(data, "enablePhaseTracking", "enable_phase_tracking", True),
            strict_todo_enforcement=_pick(
                data, "strictTodoEnforcement", "strict_todo_enforcement", True
            ),
            auto_escalate_on_error=_pick(data, "autoEscalateOnError", "auto_escalate_on_error", True),
        )


@dataclass
class SecurityConfig:
    """Security toggles plus user-supplied regexes appended to the catalogues."""

    enable_obfuscation_detection: bool = True
    blocked_patterns: list[str] = field(default_factory=list)
    warning_patterns: list[str] = field(default_factory=list)
    blocked_files: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to camelCase dictionary for JSON serialization."""
        return {
            "enableObfuscationDetection": self.enable_obfuscation_detection,
            "blockedPatterns": list(self.blocked_patterns),
            "warningPatterns": list(self.warning_patterns),
            "blockedFiles": list(self.blocked_files),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SecurityConfig":
        """Create SecurityConfig from a camelCase or snake_case dictionary."""
        return cls(
            enable_obfuscation_detection=_pick(
                data, "enableObfuscationDetection", "enable_obfuscation_detection", True
            ),
            blocked_patterns=list(_pick(data, "blockedPatterns", "blocked_patterns", [])),
            warning_patterns=list(_pick(data, "warningPatterns", "warning_patterns", [])),
            blocked_files=list(_pick(data, "blockedFiles", "blocked_files", [])),
        )


@dataclass
class NotificationConfig:
    """Filtering and throttling for user-facing session notifications."""

    enabled: bool = True
    min_severity: str = "warning"
    # Empty means every event type
    enabled_events: list[str] = field(default_factory=list)
    throttle_ms: int = 1000
    notify_on_every_strike: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to camelCase dictionary for JSON serialization."""
        return {
            "enabled": self.enabled,
            "minSeverity": self.min_severity,
            "enabledEvents": list(self.enabled_events),
            "throttleMs": self.throttle_ms,
            "notifyOnEveryStrike": self.notify_on_every_strike,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NotificationConfig":
        """Create NotificationConfig from a camelCase or snake_case dictionary."""
        return cls(
            enabled=_pick(data, "enabled", "enabled", True),
            min_severity=_pick(data, "minSeverity", "min_severity", "warning"),
            enabled_events=list(_pick(data, "enabledEvents", "enabled_events", [])),
            throttle_ms=_pick(data, "throttleMs", "throttle_ms", 1000),
            notify_on_every_strike=_pick(data, "notifyOnEveryStrike", "notify_on_every_strike", False),
        )


@dataclass
class ThinkModeConfig:
    """Model selection by task complexity. Empty model names keep the host's choice."""

    enabled: bool = False
    default_model: str = ""
    think_model: str = ""
    fast_model: str = ""
    auto_switch: bool = False
    complexity_threshold: float = 0.7
    track_performance: bool = True

    def to_dict(self) -> dict[str, Any]:
        """Convert to camelCase dictionary for JSON serialization."""
        return {
            "enabled": self.enabled,
            "defaultModel": self.default_model,
            "thinkModel": self.think_model,
            "fastModel": self.fast_model,
            "autoSwitch": self.auto_switch,
            "complexityThreshold": self.complexity_threshold,
            "trackPerformance": self.track_performance,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ThinkModeConfig":
        """Create ThinkModeConfig from a camelCase or snake_case dictionary."""
        return cls(
            enabled=_pick(data, "enabled", "enabled", False),
            default_model=_pick(data, "defaultModel", "default_model", ""),
            think_model=_pick(data, "thinkModel", "think_model", ""),
            fast_model=_pick(data, "fastModel", "fast_model", ""),
            auto_switch=_pick(data, "autoSwitch", "auto_switch", False),
            complexity_threshold=_pick(data, "complexityThreshold", "complexity_threshold", 0.7),
            track_performance=_pick(data, "trackPerformance", "track_performance", True),
        )


@dataclass
class AtreidesConfig:
    """Main configuration container for Atreides."""

    identity: IdentityConfig = field(default_factory=IdentityConfig)
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    think_mode: ThinkModeConfig = field(default_factory=ThinkModeConfig)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "identity": self.identity.to_dict(),
            "workflow": self.workflow.to_dict(),
            "security": self.security.to_dict(),
            "notifications": self.notifications.to_dict(),
            "thinkMode": self.think_mode.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AtreidesConfig":
        """Create AtreidesConfig from a dictionary, defaulting missing sections."""
        return cls(
            identity=IdentityConfig.from_dict(data.get("identity") or {}),
            workflow=WorkflowConfig.from_dict(data.get("workflow") or {}),
            security=SecurityConfig.from_dict(data.get("security") or {}),
            notifications=NotificationConfig.from_dict(data.get("notifications") or {}),
            think_mode=ThinkModeConfig.from_dict(_pick(data, "thinkMode", "think_mode", None) or {}),
        )


@dataclass
class ConfigIssue:
    """A single validation problem, addressed by dotted path."""

    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}" if self.path else self.message


def _pick(data: dict[str, Any], camel: str, snake: str, default: Any) -> Any:
    if camel in data:
        return data[camel]
    return data.get(snake, default)


# (section, camelCase key, snake_case key, expected type(s), label)
_FIELD_TYPES: list[tuple[str, str, str, Any, str]] = [
    ("identity", "personaName", "persona_name", str, "Must be a string"),
    ("identity", "responsePrefix", "response_prefix", bool, "Must be a boolean"),
    ("identity", "delegationAnnouncements", "delegation_announcements", bool, "Must be a boolean"),
    ("identity", "agentDisplayNames", "agent_display_names", dict, "Must be an object"),
    ("workflow", "enablePhaseTracking", "enable_phase_tracking", bool, "Must be a boolean"),
    ("workflow", "strictTodoEnforcement", "strict_todo_enforcement", bool, "Must be a boolean"),
    ("workflow", "autoEscalateOnError", "auto_escalate_on_error", bool, "Must be a boolean"),
    ("security", "enableObfuscationDetection", "enable_obfuscation_detection", bool, "Must be a boolean"),
    ("security", "blockedPatterns", "blocked_patterns", list, "Must be an array"),
    ("security", "warningPatterns", "warning_patterns", list, "Must be an array"),
    ("security", "blockedFiles", "blocked_files", list, "Must be an array"),
    ("notifications", "enabled", "enabled", bool, "Must be a boolean"),
    ("notifications", "minSeverity", "min_severity", str, "Must be a string"),
    ("notifications", "enabledEvents", "enabled_events", list, "Must be an array"),
    ("notifications", "throttleMs", "throttle_ms", int, "Must be a number"),
    ("notifications", "notifyOnEveryStrike", "notify_on_every_strike", bool, "Must be a boolean"),
    ("thinkMode", "enabled", "enabled", bool, "Must be a boolean"),
    ("thinkMode", "defaultModel", "default_model", str, "Must be a string"),
    ("thinkMode", "thinkModel", "think_model", str, "Must be a string"),
    ("thinkMode", "fastModel", "fast_model", str, "Must be a string"),
    ("thinkMode", "autoSwitch", "auto_switch", bool, "Must be a boolean"),
    ("thinkMode", "complexityThreshold", "complexity_threshold", (int, float), "Must be a number"),
    ("thinkMode", "trackPerformance", "track_performance", bool, "Must be a boolean"),
]

_REGEX_LISTS = ("blockedPatterns", "warningPatterns", "blockedFiles")

NOTIFICATION_SEVERITIES = ("info", "success", "warning", "error")

_SECTIONS = ("identity", "workflow", "security", "notifications", "thinkMode")


def validate_config(data: Any) -> list[ConfigIssue]:
    """
    Validate a raw "atreides" configuration section.

    Args:
        data: Parsed JSON value of the section

    Returns:
        List of issues; empty when the section is valid
    """
    if not isinstance(data, dict):
        return [ConfigIssue("", "Config must be an object")]

    issues: list[ConfigIssue] = []
    for section, camel, snake, expected, label in _FIELD_TYPES:
        section_data = data.get(section)
        if section_data is None:
            continue
        if not isinstance(section_data, dict):
            if not any(i.path == section for i in issues):
                issues.append(ConfigIssue(section, "Must be an object"))
            continue

        key = camel if camel in section_data else snake
        if key not in section_data:
            continue
        value = section_data[key]
        if not isinstance(value, expected):
            issues.append(ConfigIssue(f"{section}.{camel}", label))
            continue

        if camel in _REGEX_LISTS:
            for idx, pattern in enumerate(value):
                if not isinstance(pattern, str):
                    issues.append(ConfigIssue(f"{section}.{camel}[{idx}]", "Must be a string"))
                    continue
                try:
                    re.compile(pattern)
                except re.error as e:
                    issues.append(ConfigIssue(f"{section}.{camel}[{idx}]", f"Invalid regex: {e}"))

    notifications = data.get("notifications")
    if isinstance(notifications, dict):
        severity = _pick(notifications, "minSeverity", "min_severity", None)
        if isinstance(severity, str) and severity not in NOTIFICATION_SEVERITIES:
            issues.append(
                ConfigIssue("notifications.minSeverity", f"Must be one of: {', '.join(NOTIFICATION_SEVERITIES)}")
            )

    return issues


def _drop_invalid(data: dict[str, Any], issues: list[ConfigIssue]) -> dict[str, Any]:
    """Remove fields named by issues so their defaults apply."""
    cleaned: dict[str, Any] = {}
    for section in _SECTIONS:
        section_data = data.get(section)
        if isinstance(section_data, dict):
            cleaned[section] = dict(section_data)

    for issue in issues:
        parts = issue.path.split(".")
        if len(parts) == 1:
            cleaned.pop(parts[0], None)
            continue
        section, key = parts[0], parts[1]
        section_data = cleaned.get(section)
        if section_data is None or "[" in key:
            continue
        for variant in (key, _snake_name(key)):
            section_data.pop(variant, None)

    # A bad regex drops only that entry, not the whole list
    security = cleaned.get("security")
    if security:
        for key, values in list(security.items()):
            if isinstance(values, list) and key in (*_REGEX_LISTS, *map(_snake_name, _REGEX_LISTS)):
                security[key] = [v for v in values if isinstance(v, str) and _compiles(v)]
    return cleaned


def _compiles(pattern: str) -> bool:
    try:
        re.compile(pattern)
    except re.error:
        return False
    return True


def _snake_name(camel: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", camel).lower()


def _apply_env_overrides(config: AtreidesConfig) -> None:
    """Apply ATREIDES_* environment variables on top of file settings."""
    if persona := os.environ.get("ATREIDES_PERSONA"):
        config.identity.persona_name = persona

    toggles = {
        "ATREIDES_STRICT_TODOS": (config.workflow, "strict_todo_enforcement"),
        "ATREIDES_PHASE_TRACKING": (config.workflow, "enable_phase_tracking"),
        "ATREIDES_AUTO_ESCALATE": (config.workflow, "auto_escalate_on_error"),
        "ATREIDES_OBFUSCATION_DETECTION": (config.security, "enable_obfuscation_detection"),
        "ATREIDES_NOTIFICATIONS": (config.notifications, "enabled"),
        "ATREIDES_THINK_MODE": (config.think_mode, "enabled"),
    }
    for env_name, (section, attr) in toggles.items():
        value = os.environ.get(env_name)
        if value is not None:
            setattr(section, attr, value.strip().lower() in _TRUTHY)


def find_config_file(project_path: str | Path) -> Path | None:
    """Return the first existing config file for a project, if any."""
    root = Path(project_path).expanduser()
    for candidate in (root / HOST_CONFIG_FILE, root / LOCAL_CONFIG_FILE):
        if candidate.is_file():
            return candidate
    return None


def read_config_section(config_file: Path) -> Any:
    """
    Read the raw "atreides" section from a config file.

    Raises:
        OSError: If the file cannot be read
        json.JSONDecodeError: If the file is not valid JSON
    """
    with open(config_file, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        return data
    if config_file.name == HOST_CONFIG_FILE:
        return data.get(CONFIG_SECTION) or {}
    # .atreides/config.json may hold the section directly
    return data.get(CONFIG_SECTION, data)


def load_config(project_path: str | Path = ".", strict: bool = False) -> AtreidesConfig:
    """
    Load configuration for a project.

    Args:
        project_path: Project directory holding opencode.json
        strict: Raise instead of falling back to defaults

    Returns:
        AtreidesConfig with file settings, defaults and env overrides merged

    Raises:
        ConfigError: Only when strict is True and the file is unusable
    """
    config_file = find_config_file(project_path)
    section: Any = {}

    if config_file is not None:
        try:
            section = read_config_section(config_file)
        except (OSError, json.JSONDecodeError) as e:
            if strict:
                raise ConfigError(f"Invalid JSON in {config_file}", {"error": str(e)})
            logger.warning(f"Could not read {config_file}, using defaults: {e}")
            section = {}

        issues = validate_config(section)
        if issues:
            if strict:
                raise ConfigError(
                    f"Invalid configuration in {config_file}",
                    {"issues": [str(i) for i in issues]},
                )
            logger.warning(
                f"Config validation warnings in {config_file}: " + "; ".join(str(i) for i in issues)
            )
            section = _drop_invalid(section, issues) if isinstance(section, dict) else {}

    config = AtreidesConfig.from_dict(section)
    _apply_env_overrides(config)
    return config
