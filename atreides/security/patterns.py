"""
Atreides - Security Pattern Catalogues

Ordered pattern tables for command and path validation. Order matters:
the first matching pattern is the one reported.
"""

import re

I = re.IGNORECASE

# =============================================================================
# BLOCKED COMMANDS (deny)
# =============================================================================

BLOCKED_COMMAND_PATTERNS: list[tuple[str, int]] = [
    # Recursive deletion of root, home or everything
    (r"rm\s+(-[a-zA-Z]*)?r[a-zA-Z]*\s+(-[a-zA-Z]*\s+)*/($|\s|;)", I),
    (r"rm\s+(-[a-zA-Z]*)?r[a-zA-Z]*\s+(-[a-zA-Z]*\s+)*~($|\s|;|/)", I),
    (r"rm\s+(-[a-zA-Z]*)?r[a-zA-Z]*\s+(-[a-zA-Z]*\s+)*\*($|\s|;)", I),
    # Filesystem formatting and raw disk writes
    (r"mkfs(\.[a-z0-9]+)?", I),
    (r"dd\s+.*if=/dev/(zero|random|urandom)", I),
    (r"dd\s+.*of=/dev/(sd[a-z]|hd[a-z]|nvme)", I),
    # Fork bombs
    (r":\(\)\s*\{\s*:\|:&\s*\}\s*;?\s*:", 0),
    (r"\.\s*\|\s*\.", 0),
    (r"while\s*\(\s*true\s*\).*fork", I),
    # Remote code piped into an interpreter
    (r"curl\s+.*\|\s*(ba)?sh", I),
    (r"wget\s+.*\|\s*(ba)?sh", I),
    (r"curl\s+.*\|\s*python", I),
    (r"wget\s+.*\|\s*python", I),
    (r"curl\s+.*>\s*.*\.sh\s*&&", I),
    # Privilege escalation
    (r"sudo\s+su\s*(-|$)", I),
    (r"sudo\s+-i($|\s)", 0),
    (r"sudo\s+passwd\s+root", I),
    # Dangerous permission changes
    (r"chmod\s+(-[a-zA-Z]*\s+)*777\s+/", I),
    (r"chmod\s+(-[a-zA-Z]*\s+)*777\s+~?/", I),
    (r"chmod\s+(-[a-zA-Z]*\s+)*(u\+s|4[0-7]{3})", I),
    (r"chown\s+(-[a-zA-Z]*\s+)*root[:\s]", I),
    # Account databases
    (r">\s*/etc/(passwd|shadow|sudoers)", I),
    # Firewall
    (r"iptables\s+-F", I),
    (r"ufw\s+disable", I),
    # History tampering
    (r"history\s+-c", I),
    (r">\s*~/\.bash_history", I),
    (r"export\s+HISTSIZE=0", I),
    # Kernel
    (r"insmod|modprobe\s+", I),
    (r"echo\s+.*>\s*/proc/", I),
    (r"echo\s+.*>\s*/sys/", I),
]

# =============================================================================
# WARNING COMMANDS (ask)
# =============================================================================

WARNING_COMMAND_PATTERNS: list[tuple[str, int]] = [
    # Privilege
    (r"\bsudo\b", I),
    (r"\bsu\s+-?\s*$", I),
    (r"\bdoas\b", I),
    (r"\bchmod\b", I),
    (r"\bchown\b", I),
    (r"\bchgrp\b", I),
    # Destructive git
    (r"git\s+push\s+.*--force", I),
    (r"git\s+push\s+-f\b", I),
    (r"git\s+reset\s+--hard", I),
    (r"git\s+clean\s+-[a-z]*f", I),
    (r"git\s+checkout\s+--\s+\.", I),
    # Publishing
    (r"npm\s+publish", I),
    (r"yarn\s+publish", I),
    (r"pip\s+.*upload", I),
    (r"twine\s+upload", I),
    (r"cargo\s+publish", I),
    # Containers and clusters
    (r"docker\s+rm\s+-f", I),
    (r"docker\s+system\s+prune", I),
    (r"kubectl\s+delete", I),
    # Databases
    (r"drop\s+(database|table|schema)", I),
    (r"truncate\s+table", I),
    (r"delete\s+from\s+\w+\s*($|where\s+1)", I),
    # Services
    (r"systemctl\s+(stop|disable|mask)", I),
    (r"service\s+\w+\s+stop", I),
    # Shell environment
    (r"export\s+PATH=", I),
    (r"\.bashrc|\.zshrc|\.profile", I),
]

# =============================================================================
# BLOCKED FILES (matched against the file name or full path)
# =============================================================================

BLOCKED_FILE_PATTERNS: list[tuple[str, int]] = [
    # Environment and secret files
    (r"\.env($|\.)", I),
    (r"secrets?\.", I),
    (r"credentials?\.", I),
    (r"\.secret$", I),
    # Keys and certificates
    (r"\.pem$", I),
    (r"\.key$", I),
    (r"\.p12$", I),
    (r"\.pfx$", I),
    (r"\.crt$", I),
    # SSH
    (r"id_rsa", I),
    (r"id_dsa", I),
    (r"id_ecdsa", I),
    (r"id_ed25519", I),
    (r"authorized_keys", I),
    (r"known_hosts", I),
    # Package registry credentials
    (r"\.npmrc$", I),
    (r"\.pypirc$", I),
    (r"\.gem/credentials", I),
    (r"\.docker/config\.json$", I),
    # Cloud credentials
    (r"kubeconfig", I),
    (r"\.kube/config$", I),
    (r"gcloud.*credentials", I),
    (r"\.aws/credentials$", I),
    (r"\.azure/", I),
    # Database and network credentials
    (r"\.pgpass$", I),
    (r"\.my\.cnf$", I),
    (r"\.netrc$", I),
    (r"\.password", I),
    (r"master\.key$", I),
    (r"encryption\.key$", I),
]

# =============================================================================
# BLOCKED PATHS (directory prefixes)
# =============================================================================

BLOCKED_PATH_PATTERNS: list[tuple[str, int]] = [
    (r"^\.?ssh/", I),
    (r"^~/\.ssh/", I),
    (r"^/.*/\.ssh/", I),
    (r"^\.?aws/", I),
    (r"^~/\.aws/", I),
    (r"^\.?kube/", I),
    (r"^~/\.kube/", I),
    (r"^\.?gcloud/", I),
    (r"^~/\.gcloud/", I),
    (r"^\.?azure/", I),
    (r"^~/\.azure/", I),
    (r"^/etc/passwd$", I),
    (r"^/etc/shadow$", I),
    (r"^/etc/sudoers", I),
    (r"^/etc/ssh/", I),
    (r"^\.?gnupg/", I),
    (r"^~/\.gnupg/", I),
    (r"^\.?mozilla/firefox.*logins", I),
    (r"^\.?config/google-chrome.*Login", I),
]

# =============================================================================
# PATH TRAVERSAL
# =============================================================================

TRAVERSAL_PATTERNS: list[tuple[str, int]] = [
    (r"\.\./", 0),
    (r"\.\.\\", 0),
    (r"\.\.$", 0),
    (r"^\.\.$", 0),
    (r"%2e%2e", I),
    (r"\.\.%2f", I),
]


def compile_patterns(patterns: list[tuple[str, int]]) -> list[re.Pattern[str]]:
    """Compile a (pattern, flags) table, preserving order."""
    return [re.compile(p, flags) for p, flags in patterns]


def compile_user_patterns(patterns: list[str]) -> list[re.Pattern[str]]:
    """Compile user-configured regexes case-insensitively, skipping invalid ones."""
    compiled = []
    for p in patterns:
        try:
            compiled.append(re.compile(p, I))
        except re.error:
            continue
    return compiled


def first_match(patterns: list[re.Pattern[str]], *texts: str) -> re.Pattern[str] | None:
    """Return the first pattern that matches any of texts, in table order."""
    for pattern in patterns:
        for text in texts:
            if pattern.search(text):
                return pattern
    return None
