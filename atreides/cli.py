"""
Atreides CLI - Typer Commands

Offline tools around the orchestration engine: validate commands and
paths, classify requests, replay recorded hook events, inspect preserved
state blocks, browse the audit logs and check configuration.
"""

import json
import logging
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table
from rich.text import Text

from atreides import __version__
from atreides.config import find_config_file, load_config, read_config_section, validate_config
from atreides.exceptions import CompactionParseError, ConfigError
from atreides.logging.viewer import calculate_stats, format_entry_line, format_stats, query_logs
from atreides.orchestrator.compaction import parse_block
from atreides.orchestrator.notifications import Notification, NotificationSink, Severity
from atreides.orchestrator.workflow import classify_intent
from atreides.runtime import AtreidesRuntime
from atreides.security import CommandValidationPipeline, ValidationAction, ValidationResult

logger = logging.getLogger(__name__)
console = Console()

app = typer.Typer(
    name="atreides",
    help="Per-session orchestration engine: command validation, workflow phases, error recovery",
    add_completion=False,
)

EXIT_DENY = 1
EXIT_ASK = 2

ACTION_STYLES = {
    ValidationAction.ALLOW: "green",
    ValidationAction.ASK: "yellow",
    ValidationAction.DENY: "bold red",
}


SEVERITY_STYLES = {
    Severity.INFO: "dim",
    Severity.SUCCESS: "green",
    Severity.WARNING: "yellow",
    Severity.ERROR: "bold red",
}


def _print_notification(notification: Notification) -> None:
    console.print(
        Text.assemble(
            ("     ! ", SEVERITY_STYLES[notification.severity]),
            (f"{notification.title}: ", "bold"),
            notification.message,
        )
    )


def _load(project: str, notify: NotificationSink | None = None) -> AtreidesRuntime:
    try:
        return AtreidesRuntime.from_project(project, notify=notify)
    except ConfigError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        raise typer.Exit(1)


def _show_result(subject: str, result: ValidationResult) -> None:
    style = ACTION_STYLES[result.action]
    table = Table(show_header=False, box=None)
    table.add_column("Field", style="dim")
    table.add_column("Value")
    table.add_row("Input", Text(subject))
    table.add_row("Action", Text(result.action.value.upper(), style=style))
    if result.reason:
        table.add_row("Reason", Text(result.reason))
    if result.matched_pattern:
        table.add_row("Pattern", Text(result.matched_pattern))
    if result.normalized_input and result.normalized_input != subject:
        table.add_row("Normalized", Text(result.normalized_input))
    if result.obfuscated:
        table.add_row("Obfuscated", "[yellow]yes[/yellow]")
    console.print(table)


@app.command()
def version() -> None:
    """Show the installed version."""
    console.print(f"atreides {__version__}")


@app.command()
def validate(
    command: str = typer.Argument(None, help="Shell command to validate"),
    path: str = typer.Option(None, "--path", "-p", help="Validate a file path instead"),
    project: str = typer.Option(".", "--project", help="Project directory with opencode.json"),
) -> None:
    """Validate a command or path. Exit code 1 on deny, 2 on ask."""
    if not command and not path:
        console.print("[red]Error:[/red] give a COMMAND or --path")
        raise typer.Exit(1)

    runtime = _load(project)
    pipeline: CommandValidationPipeline = runtime.pipeline
    subject = path if path else command
    result = pipeline.validate_path(path, "cli") if path else pipeline.validate_command(command, "cli")
    _show_result(subject, result)

    if result.action == ValidationAction.DENY:
        raise typer.Exit(EXIT_DENY)
    if result.action == ValidationAction.ASK:
        raise typer.Exit(EXIT_ASK)


@app.command()
def classify(text: str = typer.Argument(..., help="Request text to classify")) -> None:
    """Print the intent category for a request."""
    console.print(classify_intent(text).value)


def _dispatch(runtime: AtreidesRuntime, event: dict[str, Any]) -> Any:
    hook = event.get("hook")
    session = str(event.get("session") or "replay")

    if hook == "before_tool":
        return runtime.before_tool(event.get("tool", ""), event.get("input"), session).to_dict()
    if hook == "after_tool":
        result = runtime.after_tool(event.get("tool", ""), event.get("output"), session, event.get("input"))
        state = runtime.store.get_or_none(session)
        return {
            "action": result.action.value if result else None,
            "strikes": result.strike_count if result else None,
            "phase": state.phase.value if state else None,
        }
    if hook == "stop":
        return runtime.on_stop(session).to_dict()
    if hook == "compact":
        return runtime.on_compact(session, event.get("summary", ""))
    if hook == "restore":
        return runtime.restore_from_summary(session, event.get("text", ""))
    if hook == "user_message":
        runtime.on_user_message(session, event.get("text", ""))
        return runtime.store.get(session).phase.value
    if hook == "assistant_message":
        changes = runtime.on_assistant_message(session, event.get("text", ""))
        return {"created": len(changes.created), "completed": len(changes.completed)}
    if hook == "system_prompt":
        return runtime.transform_system_prompt(session, event.get("system", ""))
    if hook == "chat_params":
        return runtime.on_chat_params(session, dict(event.get("params") or {}))
    if hook == "event":
        runtime.on_event(event.get("type", ""), session)
        return event.get("type")
    if hook == "session_start":
        runtime.on_session_start(session)
        return "started"
    if hook == "session_end":
        runtime.on_session_end(session)
        return "ended"
    raise ValueError(f"Unknown hook: {hook}")


@app.command()
def replay(
    events_file: Path = typer.Argument(..., help="JSONL file of hook events"),
    project: str = typer.Option(".", "--project", help="Project directory with opencode.json"),
) -> None:
    """Feed recorded hook events through one runtime and print each result."""
    if not events_file.is_file():
        console.print(f"[red]File not found:[/red] {events_file}")
        raise typer.Exit(1)

    runtime = _load(project, notify=_print_notification)
    sessions: list[str] = []
    failures = 0

    with open(events_file, encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                event = json.loads(line)
                if not isinstance(event, dict):
                    raise ValueError("event must be a JSON object")
                result = _dispatch(runtime, event)
            except (json.JSONDecodeError, ValueError) as e:
                failures += 1
                console.print(Text.assemble((f"{line_no:4d} skipped: ", "red"), str(e)))
                continue

            session = str(event.get("session") or "replay")
            if session not in sessions:
                sessions.append(session)
            rendered = result if isinstance(result, str) else json.dumps(result, default=str)
            console.print(
                Text.assemble(
                    (f"{line_no:4d} ", "dim"),
                    (f"{event['hook']:18s} ", "cyan"),
                    f"{session:12s} ",
                    rendered,
                )
            )

    table = Table(title="Sessions")
    table.add_column("Session")
    table.add_column("Phase")
    table.add_column("Intent")
    table.add_column("Strikes", justify="right")
    table.add_column("Tools", justify="right")
    table.add_column("Todos", justify="right")
    for session in sessions:
        stats = runtime.session_summary(session)
        if stats is None:
            table.add_row(Text(session), Text("ended", style="dim"), "", "", "", "")
            continue
        table.add_row(
            Text(session),
            stats["phase"],
            stats["intent"] or "",
            str(stats["strike_count"]),
            str(stats["tool_calls"]),
            f"{stats['todos_completed']}/{stats['todo_count']}",
        )
    console.print(table)

    if failures:
        raise typer.Exit(1)


@app.command(name="parse-state")
def parse_state(file: Path = typer.Argument(..., help="Text file containing a preserved state block")) -> None:
    """Extract and print a preserved state block."""
    try:
        text = file.read_text(encoding="utf-8")
        state = parse_block(text, strict=True)
    except OSError as e:
        console.print(f"[red]Cannot read {file}:[/red] {e}")
        raise typer.Exit(1)
    except CompactionParseError as e:
        console.print(f"[red]No state found:[/red] {e.message}")
        raise typer.Exit(1)

    table = Table(show_header=False, box=None)
    table.add_column("Field", style="dim")
    table.add_column("Value")
    table.add_row("Phase", state.workflow_phase.value)
    table.add_row("Intent", state.intent or "-")
    table.add_row("Strikes", str(state.strike_count))
    if state.escalated:
        escalated_at = state.escalated_at.isoformat() if state.escalated_at else "?"
        table.add_row("Escalated", Text(f"yes ({state.triggering_tool or '?'} at {escalated_at})", style="red"))
    table.add_row("Todo progress", f"{state.completed_todos}/{state.total_todos}")
    for todo in state.pending_todos:
        marker = "[-]" if todo.status == "in_progress" else "[ ]"
        table.add_row("Pending", Text(f"{marker} {todo.description}"))
    if state.recent_tools:
        tools = ", ".join(f"{t.tool}{'' if t.success else ' (failed)'}" for t in state.recent_tools)
        table.add_row("Recent tools", Text(tools))
    if state.persona_name:
        table.add_row("Identity", Text(state.persona_name))
    console.print(table)

    if state.last_error_output:
        console.print("[dim]Last error output:[/dim]")
        console.print(state.last_error_output, markup=False, highlight=False)


@app.command()
def logs(
    log_type: str = typer.Option("all", "--type", "-t", help="Log type: security, session, all"),
    since: str = typer.Option(
        None, "--since", "-s", help="Time filter (ISO or relative: 1h, 30m, 2d)"
    ),
    session: str = typer.Option(None, "--session", help="Filter by session ID"),
    action: str = typer.Option(None, "--action", help="Filter validations by action"),
    tail: int = typer.Option(20, "--tail", "-n", help="Show last N entries"),
    stats: bool = typer.Option(False, "--stats", help="Show statistics instead of entries"),
) -> None:
    """View and analyze Atreides audit logs."""
    try:
        entries = query_logs(
            log_type=log_type,
            since=since,
            session_id=session,
            action=action,
            limit=tail if not stats else 10000,
        )

        if not entries:
            console.print("[dim]No log entries found[/dim]")
            return

        if stats:
            console.print(format_stats(calculate_stats(entries)), markup=False)
            return

        for entry in reversed(entries[:tail]):
            line = format_entry_line(entry)
            if entry.get("_source") == "security":
                style = {"deny": "red", "ask": "yellow"}.get(entry.get("action", ""), "green")
            else:
                style = "dim"
            console.print(line, style=style, markup=False, highlight=False)

    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    except Exception as e:
        console.print(f"[red]Error reading logs:[/red] {e}")
        raise typer.Exit(1)


@app.command()
def config(
    project: str = typer.Option(".", "--project", help="Project directory with opencode.json"),
) -> None:
    """Show the effective configuration and any validation issues."""
    config_file = find_config_file(project)
    if config_file is None:
        console.print("[dim]No config file found, using defaults[/dim]")
    else:
        console.print(f"[dim]Config file:[/dim] {config_file}")
        try:
            issues = validate_config(read_config_section(config_file))
        except (OSError, json.JSONDecodeError) as e:
            console.print(f"[red]Cannot read config:[/red] {e}")
            issues = []
        for issue in issues:
            console.print(Text.assemble(("warning: ", "yellow"), str(issue)))

    effective = load_config(project)
    console.print_json(json.dumps(effective.to_dict()))


def run() -> None:
    """Entry point wrapper that invokes the Typer app."""
    app()


if __name__ == "__main__":
    run()
