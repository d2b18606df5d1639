"""Tests for the Typer CLI."""

import json

import pytest
from typer.testing import CliRunner

from atreides import __version__
from atreides.cli import EXIT_ASK, EXIT_DENY, app
from atreides.orchestrator.compaction import PreservedState, format_block
from atreides.state import WorkflowPhase

runner = CliRunner()


class TestValidate:
    """Tests for the validate command."""

    def test_version(self):
        """version prints the package version."""
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_allowed_command(self, tmp_path):
        """Allowed commands exit 0."""
        result = runner.invoke(app, ["validate", "ls -la", "--project", str(tmp_path)])
        assert result.exit_code == 0
        assert "ALLOW" in result.output

    def test_denied_command(self, tmp_path):
        """Denied commands exit with the deny code."""
        result = runner.invoke(app, ["validate", "rm -rf /", "--project", str(tmp_path)])
        assert result.exit_code == EXIT_DENY
        assert "DENY" in result.output

    def test_ask_command(self, tmp_path):
        """Warning commands exit with the ask code."""
        result = runner.invoke(app, ["validate", "sudo apt update", "--project", str(tmp_path)])
        assert result.exit_code == EXIT_ASK

    def test_path(self, tmp_path):
        """--path validates a file path."""
        result = runner.invoke(app, ["validate", "--path", ".env", "--project", str(tmp_path)])
        assert result.exit_code == EXIT_DENY

    def test_project_patterns(self, tmp_path):
        """Project config patterns are applied."""
        (tmp_path / "opencode.json").write_text(
            json.dumps({"atreides": {"security": {"blockedPatterns": ["terraform destroy"]}}})
        )
        result = runner.invoke(app, ["validate", "terraform destroy", "--project", str(tmp_path)])
        assert result.exit_code == EXIT_DENY

    def test_no_input(self):
        """Nothing to validate is an error."""
        assert runner.invoke(app, ["validate"]).exit_code == 1

    def test_classify(self):
        """classify prints the intent."""
        result = runner.invoke(app, ["classify", "fix the login bug"])
        assert result.exit_code == 0
        assert result.output.strip() == "bugfix"


class TestParseState:
    """Tests for the parse-state command."""

    def test_parse_block(self, tmp_path):
        """A file containing a block is summarized."""
        path = tmp_path / "summary.md"
        state = PreservedState(workflow_phase=WorkflowPhase.VERIFICATION, intent="test", strike_count=2)
        path.write_text("Summary\n" + format_block(state))
        result = runner.invoke(app, ["parse-state", str(path)])
        assert result.exit_code == 0
        assert "verification" in result.output

    def test_no_block(self, tmp_path):
        """A file without a block exits 1."""
        path = tmp_path / "summary.md"
        path.write_text("nothing here")
        assert runner.invoke(app, ["parse-state", str(path)]).exit_code == 1

    def test_missing_file(self, tmp_path):
        """An unreadable file exits 1."""
        assert runner.invoke(app, ["parse-state", str(tmp_path / "missing.md")]).exit_code == 1


class TestReplay:
    """Tests for the replay command."""

    def write_events(self, path, events):
        path.write_text("\n".join(json.dumps(e) for e in events) + "\n")

    def test_replay_session(self, tmp_path):
        """Recorded events are fed through one runtime."""
        events = tmp_path / "events.jsonl"
        self.write_events(
            events,
            [
                {"hook": "session_start", "session": "s1"},
                {"hook": "user_message", "session": "s1", "text": "fix the login bug"},
                {"hook": "before_tool", "session": "s1", "tool": "bash", "input": {"command": "rm -rf /"}},
                {"hook": "after_tool", "session": "s1", "tool": "bash", "output": {"exitCode": 1}},
                {"hook": "after_tool", "session": "s1", "tool": "bash", "output": {"exitCode": 1}},
                {"hook": "after_tool", "session": "s1", "tool": "bash", "output": {"exitCode": 1}},
                {"hook": "assistant_message", "session": "s1", "text": "- [ ] Reproduce"},
                {"hook": "stop", "session": "s1"},
            ],
        )
        result = runner.invoke(app, ["replay", str(events), "--project", str(tmp_path)])
        assert result.exit_code == 0
        assert "escalated" in result.output
        assert "Sessions" in result.output
        assert "Security Block: Tool 'bash' blocked" in result.output
        assert "Stilgar Escalation" in result.output

    def test_replay_delegation_and_chat_params(self, tmp_path):
        """Delegation announcements and chat params show up in the replay."""
        (tmp_path / "opencode.json").write_text(
            json.dumps({"atreides": {"thinkMode": {"enabled": True, "defaultModel": "model-default"}}})
        )
        events = tmp_path / "events.jsonl"
        self.write_events(
            events,
            [
                {"hook": "before_tool", "session": "s1", "tool": "task", "input": {"subagent_type": "explore"}},
                {"hook": "chat_params", "session": "s1", "params": {"model": "host-model"}},
            ],
        )
        result = runner.invoke(app, ["replay", str(events), "--project", str(tmp_path)])
        assert result.exit_code == 0
        assert "Delegating" in result.output
        assert "Explore" in result.output
        assert "model-default" in result.output

    def test_bad_lines_fail(self, tmp_path):
        """Malformed lines and unknown hooks are counted as failures."""
        events = tmp_path / "events.jsonl"
        events.write_text('not json\n{"hook": "teleport"}\n')
        result = runner.invoke(app, ["replay", str(events), "--project", str(tmp_path)])
        assert result.exit_code == 1
        assert "skipped" in result.output

    def test_missing_file(self, tmp_path):
        """A missing events file exits 1."""
        assert runner.invoke(app, ["replay", str(tmp_path / "none.jsonl")]).exit_code == 1


class TestConfigCommand:
    """Tests for the config command."""

    def test_defaults(self, tmp_path):
        """Without a file the defaults are shown."""
        result = runner.invoke(app, ["config", "--project", str(tmp_path)])
        assert result.exit_code == 0
        assert "No config file found" in result.output
        assert "personaName" in result.output

    def test_issues_reported(self, tmp_path):
        """Validation issues are printed as warnings."""
        (tmp_path / "opencode.json").write_text(
            json.dumps({"atreides": {"workflow": {"enablePhaseTracking": "yes"}}})
        )
        result = runner.invoke(app, ["config", "--project", str(tmp_path)])
        assert result.exit_code == 0
        assert "workflow.enablePhaseTracking" in result.output


class TestLogsCommand:
    """Tests for the logs command."""

    def test_empty(self):
        """No logs prints a notice."""
        result = runner.invoke(app, ["logs"])
        assert result.exit_code == 0
        assert "No log entries found" in result.output

    def test_shows_validations(self, tmp_path):
        """Validation decisions appear in the security log."""
        runner.invoke(app, ["validate", "rm -rf /", "--project", str(tmp_path)])
        result = runner.invoke(app, ["logs", "--type", "security"])
        assert result.exit_code == 0
        assert "DENY" in result.output

    def test_stats(self, tmp_path):
        """--stats summarizes the logs."""
        runner.invoke(app, ["validate", "ls", "--project", str(tmp_path)])
        result = runner.invoke(app, ["logs", "--stats"])
        assert result.exit_code == 0
        assert "=== Validation ===" in result.output

    @pytest.mark.parametrize("args", [["--type", "metrics"], ["--since", "yesterday"]])
    def test_invalid_options(self, args):
        """Bad filters exit 1."""
        assert runner.invoke(app, ["logs", *args]).exit_code == 1
