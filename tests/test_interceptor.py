"""Tests for the tool execution interceptor."""

import pytest

from atreides.orchestrator.interceptor import ToolExecutionInterceptor, extract_result_status
from atreides.security import CommandValidationPipeline, ValidationAction


class TestExtractResultStatus:
    """Tests for extract_result_status."""

    def test_non_dict_is_success(self):
        """Plain strings and None are successes."""
        assert extract_result_status("output").success
        assert extract_result_status(None).success

    def test_error_string(self):
        """A non-empty error string is a failure with that message."""
        outcome = extract_result_status({"error": "boom"})
        assert not outcome.success
        assert outcome.error == "boom"

    def test_error_true(self):
        """error=True is a failure."""
        assert extract_result_status({"error": True}).error == "Unknown error"

    def test_success_flag(self):
        """An explicit success flag decides."""
        assert extract_result_status({"success": True, "exitCode": 1}).success
        outcome = extract_result_status({"success": False, "message": "nope"})
        assert not outcome.success
        assert outcome.error == "nope"

    def test_exit_code(self):
        """A non-zero exit code is a failure."""
        assert extract_result_status({"exitCode": 2}).error == "Exit code: 2"
        assert extract_result_status({"exit_code": 0}).success


class TestInterceptor:
    """Tests for before/after tracking."""

    @pytest.fixture
    def interceptor(self, store):
        return ToolExecutionInterceptor(store, CommandValidationPipeline())

    def test_before_validates(self, interceptor, store):
        """before() returns the pipeline's decision."""
        store.get("s1")
        assert interceptor.before("bash", {"command": "rm -rf /"}, "s1").action == ValidationAction.DENY
        assert interceptor.before("bash", {"command": "ls"}, "s1").allowed

    def test_before_without_validation(self, interceptor, store):
        """validate=False only starts the tracker."""
        store.get("s1")
        assert interceptor.before("bash", {"command": "rm -rf /"}, "s1", validate=False).allowed
        assert interceptor.in_flight("s1") == ["bash"]

    def test_before_fails_closed(self, store):
        """A raising pipeline produces a deny."""

        class ExplodingPipeline(CommandValidationPipeline):
            def validate_tool_input(self, tool, tool_input, session_id=None):
                raise RuntimeError("kaboom")

        interceptor = ToolExecutionInterceptor(store, ExplodingPipeline())
        store.get("s1")
        result = interceptor.before("bash", {"command": "ls"}, "s1")
        assert result.denied
        assert result.reason == "Validation error occurred"

    def test_after_records_history(self, interceptor, store):
        """after() appends a record with duration and outcome."""
        store.get("s1")
        interceptor.before("bash", {"command": "ls"}, "s1")
        completed = interceptor.after("bash", {"exitCode": 1}, "s1")

        history = store.get("s1").tool_history
        assert len(history) == 1
        assert history[0].tool == "bash"
        assert history[0].success is False
        assert history[0].duration_ms is not None
        assert completed.tool_input == {"command": "ls"}
        assert interceptor.in_flight("s1") == []

    def test_after_without_before(self, interceptor, store):
        """An unmatched after() still records, without a duration."""
        store.get("s1")
        completed = interceptor.after("read", "contents", "s1")
        assert completed.record.duration_ms is None
        assert completed.tool_input is None
        assert store.get("s1").tool_history[0].success is True

    def test_clear_session_sweeps_trackers(self, interceptor, store):
        """Dangling trackers are removed on clear_session."""
        store.get("s1")
        interceptor.before("bash", "ls", "s1")
        interceptor.before("read", {"file_path": "a.py"}, "s1")
        assert interceptor.clear_session("s1") == 2
        assert interceptor.in_flight("s1") == []
        assert interceptor.clear_session("s1") == 0

    def test_tool_stats(self, interceptor, store):
        """Stats aggregate the session history."""
        store.get("s1")
        interceptor.after("read", "ok", "s1")
        interceptor.after("read", "ok", "s1")
        interceptor.after("bash", {"exitCode": 1}, "s1")
        stats = interceptor.get_tool_stats("s1")
        assert stats.total_calls == 3
        assert stats.success_count == 2
        assert stats.failure_count == 1
        assert stats.tool_breakdown == {"read": 2, "bash": 1}

    def test_tool_stats_unknown_session(self, interceptor):
        """Unknown sessions have empty stats."""
        assert interceptor.get_tool_stats("ghost").total_calls == 0
