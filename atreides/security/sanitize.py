"""
Atreides - Redaction helpers for logged commands and tool output.
"""

import re

MAX_LOGGED_COMMAND = 200
DEFAULT_MAX_OUTPUT = 10_000

_URL_USERINFO = re.compile(r"(://[^:/\s]+:)[^@\s]+(@)")
_SECRET_ASSIGNMENT = re.compile(r"((?:PASSWORD|SECRET|KEY|TOKEN|API_KEY|AUTH)[=:])[^\s]+", re.IGNORECASE)
_BASE64_BLOB = re.compile(r"[A-Za-z0-9+/]{40,}={0,2}")
_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*[a-zA-Z]")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def sanitize_command_for_logging(command: str, max_length: int = MAX_LOGGED_COMMAND) -> str:
    """
    Mask credentials in a command and truncate it for the audit log.

    Masks URL passwords, values after PASSWORD=/SECRET=/KEY=/TOKEN=-style
    assignments, and base64 blobs of 40+ characters.
    """
    text = _URL_USERINFO.sub(r"\1***\2", command)
    text = _SECRET_ASSIGNMENT.sub(r"\1***", text)
    text = _BASE64_BLOB.sub("[BASE64_REDACTED]", text)
    if len(text) > max_length:
        text = text[:max_length] + "..."
    return text


def sanitize_log_output(output: str, max_length: int = DEFAULT_MAX_OUTPUT) -> str:
    """Strip ANSI codes and control characters (keeping newline/tab) and truncate."""
    text = _ANSI_ESCAPE.sub("", output)
    text = _CONTROL_CHARS.sub("", text)
    if len(text) > max_length:
        text = text[:max_length] + "... (truncated)"
    return text
