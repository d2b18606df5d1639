"""
Log Viewer Utilities for Atreides.

Query, filter and summarize the JSONL audit logs.
Used by the `atreides logs` CLI command.
"""

import json
import re
from collections.abc import Iterator
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from .config import get_config

LOG_TYPES = ("security", "session", "all")


def parse_since(since: str) -> datetime:
    """
    Parse a 'since' time string into a datetime.

    Supports:
        - ISO format: "2026-01-11T10:00:00"
        - Relative: "1h", "30m", "2d", "1w"

    Raises:
        ValueError: If the string matches neither form
    """
    try:
        return datetime.fromisoformat(since)
    except ValueError:
        pass

    match = re.match(r"^(\d+)([mhdw])$", since.lower())
    if match:
        value = int(match.group(1))
        delta_map = {
            "m": timedelta(minutes=value),
            "h": timedelta(hours=value),
            "d": timedelta(days=value),
            "w": timedelta(weeks=value),
        }
        return datetime.now() - delta_map[match.group(2)]

    raise ValueError(f"Invalid time format: {since}. Use ISO format or relative (1h, 30m, 2d)")


def read_jsonl(filepath: Path, since: datetime | None = None) -> Iterator[dict[str, Any]]:
    """
    Read entries from a JSONL file, skipping malformed lines.

    Args:
        filepath: Path to JSONL file
        since: Only return entries at or after this time

    Yields:
        Parsed log entries as dicts
    """
    if not filepath.exists():
        return

    with open(filepath, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                continue
            if not isinstance(entry, dict):
                continue

            if since:
                try:
                    if datetime.fromisoformat(entry.get("timestamp", "")) < since:
                        continue
                except (ValueError, TypeError):
                    continue

            yield entry


def _log_files(log_type: str) -> list[tuple[str, Path]]:
    if log_type not in LOG_TYPES:
        raise ValueError(f"Unknown log type: {log_type}. Use one of: {', '.join(LOG_TYPES)}")
    config = get_config()
    files: list[tuple[str, Path]] = []
    if log_type in ("security", "all"):
        files.append(("security", config.security_log_path))
    if log_type in ("session", "all"):
        files.append(("session", config.session_log_path))
    return files


def query_logs(
    log_type: str = "all",
    since: str | None = None,
    session_id: str | None = None,
    action: str | None = None,
    limit: int = 50,
) -> list[dict[str, Any]]:
    """
    Query log entries with filters, newest first.

    Args:
        log_type: "security", "session", or "all"
        since: Time filter (ISO or relative like "1h")
        session_id: Filter by session ID
        action: Filter security entries by action (allow/ask/deny)
        limit: Max entries to return

    Returns:
        List of matching log entries, each tagged with "_source"
    """
    since_dt = parse_since(since) if since else None
    results: list[dict[str, Any]] = []

    for source, filepath in _log_files(log_type):
        for entry in read_jsonl(filepath, since=since_dt):
            entry["_source"] = source
            if session_id and entry.get("session_id") != session_id:
                continue
            if action and entry.get("action") != action:
                continue
            results.append(entry)

    results.sort(key=lambda x: x.get("timestamp", ""), reverse=True)
    return results[:limit]


def percentile(values: list[float], p: float) -> float:
    """Calculate a linear-interpolated percentile."""
    if not values:
        return 0.0
    sorted_vals = sorted(values)
    k = (len(sorted_vals) - 1) * p / 100
    f = int(k)
    c = f + 1 if f + 1 < len(sorted_vals) else f
    return sorted_vals[f] + (k - f) * (sorted_vals[c] - sorted_vals[f])


def calculate_stats(entries: list[dict[str, Any]]) -> dict[str, Any]:
    """
    Summarize a list of log entries.

    Returns:
        Dictionary with validation counts, latency percentiles and
        session event counts
    """
    security = [e for e in entries if e.get("_source") == "security"]
    session = [e for e in entries if e.get("_source") == "session"]

    actions = {"allow": 0, "ask": 0, "deny": 0}
    for e in security:
        action = e.get("action", "")
        if action in actions:
            actions[action] += 1

    latencies = [float(e.get("latency_ms", 0.0)) for e in security if not e.get("cached")]
    patterns: dict[str, int] = {}
    for e in security:
        if e.get("action") == "deny" and (p := e.get("matched_pattern")):
            patterns[p] = patterns.get(p, 0) + 1

    events: dict[str, int] = {}
    for e in session:
        event = e.get("event_type", "unknown")
        events[event] = events.get(event, 0) + 1

    return {
        "validations": len(security),
        "actions": actions,
        "obfuscated": sum(1 for e in security if e.get("obfuscated")),
        "cache_hits": sum(1 for e in security if e.get("cached")),
        "avg_latency_ms": round(sum(latencies) / len(latencies), 3) if latencies else 0.0,
        "p50_latency_ms": round(percentile(latencies, 50), 3),
        "p95_latency_ms": round(percentile(latencies, 95), 3),
        "top_blocked_patterns": dict(sorted(patterns.items(), key=lambda x: -x[1])[:5]),
        "session_events": events,
        "sessions": len({e.get("session_id") for e in entries if e.get("session_id")}),
    }


def format_entry_line(entry: dict[str, Any]) -> str:
    """Format a log entry as a single display line."""
    source = entry.get("_source", "?")
    ts = entry.get("timestamp", "")[:19]
    session = str(entry.get("session_id", ""))[:12]

    if source == "security":
        action = entry.get("action", "?").upper()
        kind = entry.get("kind", "?")
        flag = " obfuscated" if entry.get("obfuscated") else ""
        return f"[{ts}] {session:12s} {action:5s} {kind:7s} {entry.get('input', '')[:60]}{flag}"

    if source == "session":
        event = entry.get("event_type", "?")
        if event == "phase_change":
            return f"[{ts}] {session:12s} {event:12s} {entry.get('from_phase')} -> {entry.get('to_phase')}"
        detail = entry.get("detail") or entry.get("error") or ""
        return f"[{ts}] {session:12s} {event:12s} {detail[:60]}"

    return f"[{ts}] {source.upper()} {json.dumps(entry)[:60]}..."


def format_stats(stats: dict[str, Any]) -> str:
    """Format statistics from calculate_stats() for display."""
    actions = stats["actions"]
    lines = [
        "=== Validation ===",
        f"  Decisions:      {stats['validations']} "
        f"(allow {actions['allow']}, ask {actions['ask']}, deny {actions['deny']})",
        f"  Obfuscated:     {stats['obfuscated']}",
        f"  Cache hits:     {stats['cache_hits']}",
        f"  Latency:        avg {stats['avg_latency_ms']}ms, "
        f"p50 {stats['p50_latency_ms']}ms, p95 {stats['p95_latency_ms']}ms",
    ]

    if stats.get("top_blocked_patterns"):
        lines.append("  Top blocked patterns:")
        for pattern, count in stats["top_blocked_patterns"].items():
            lines.append(f"    - {pattern[:60]}: {count}")

    lines.extend(["", "=== Sessions ===", f"  Sessions seen:  {stats['sessions']}"])
    for event, count in sorted(stats.get("session_events", {}).items()):
        lines.append(f"    - {event}: {count}")

    return "\n".join(lines)
