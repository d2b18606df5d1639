"""
PII filtering for free-text log fields.
"""

import re
from pathlib import Path

PII_REDACTED = "[REDACTED]"
HOME_REDACTED = "~"

PII_PATTERNS: list[re.Pattern[str]] = [
    # Private key blocks
    re.compile(
        r"-----BEGIN (?:RSA |DSA |EC |OPENSSH |PGP )?PRIVATE KEY-----[\s\S]*?"
        r"-----END (?:RSA |DSA |EC |OPENSSH |PGP )?PRIVATE KEY-----"
    ),
    # JWTs
    re.compile(r"\beyJ[A-Za-z0-9_-]*\.eyJ[A-Za-z0-9_-]*\.[A-Za-z0-9_-]*"),
    # Emails
    re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
    # Prefixed API keys
    re.compile(r"\b(?:sk_|pk_|api_|key_|secret_|token_|bearer_|auth_)[a-zA-Z0-9_-]{20,}\b", re.IGNORECASE),
    # GitHub tokens
    re.compile(r"\b(?:ghp_|gho_|ghu_|ghs_|ghr_)[A-Za-z0-9_]{36,}\b"),
    # AWS access keys
    re.compile(r"\b(?:AKIA|ABIA|ACCA|AGPA|AIDA|AIPA|ANPA|ANVA|AROA|ASCA|ASIA)[A-Z0-9]{16}\b"),
    # Credential assignments
    re.compile(r"\b(?:password|passwd|pwd|secret|token|api_key|apikey)\s*[:=]\s*['\"]?[^\s'\"]+['\"]?", re.IGNORECASE),
    # Card numbers
    re.compile(r"\b\d{4}[- ]?\d{4}[- ]?\d{4}[- ]?\d{4}\b"),
]


def filter_pii(value: str, home: Path | None = None) -> str:
    """
    Scrub PII and credentials from a string.

    Args:
        value: Text to filter
        home: Home directory to shorten to "~" (defaults to Path.home())

    Returns:
        Filtered text
    """
    home_str = str(home if home is not None else Path.home())
    if home_str and home_str != "/":
        value = value.replace(home_str, HOME_REDACTED)
    for pattern in PII_PATTERNS:
        value = pattern.sub(PII_REDACTED, value)
    return value
