"""Tests for the todo tracker and stop gate."""

import pytest

from atreides.orchestrator.todos import (
    TodoTracker,
    format_pending_reason,
    fuzzy_match,
    todo_id,
)


@pytest.fixture
def tracker(store):
    store.get("s1")
    return TodoTracker(store)


class TestHelpers:
    """Tests for matching and id helpers."""

    def test_todo_id_is_stable(self):
        """Ids ignore case and whitespace differences."""
        assert todo_id("Add  Login Form") == todo_id("add login form")
        assert todo_id("a").startswith("todo-")
        assert todo_id("a") != todo_id("b")

    def test_fuzzy_substring(self):
        """Substrings in either direction match."""
        assert fuzzy_match("login form", "Add login form")
        assert fuzzy_match("Add the login form now", "login form")

    def test_fuzzy_word_overlap(self):
        """Half the significant words in common is a match."""
        assert fuzzy_match("database migration setup", "setup the database")
        assert not fuzzy_match("deploy", "write docs")
        assert not fuzzy_match("", "write docs")

    def test_pending_reason(self, tracker):
        """The stop reason lists pending items."""
        item = tracker.add("s1", "Write tests")
        assert format_pending_reason([item]) == (
            "Cannot stop: 1 pending todo(s)\n\n"
            "- [ ] Write tests\n\n"
            "Please complete or remove todos before stopping."
        )


class TestDetection:
    """Tests for detection in assistant text."""

    def test_create_then_complete_by_phrase(self, tracker):
        """A checkbox creates a todo; a completion phrase finishes it."""
        changes = tracker.detect("s1", "Plan:\n- [ ] Add login form")
        assert [t.description for t in changes.created] == ["Add login form"]
        assert not tracker.check_pending("s1").allow

        changes = tracker.detect("s1", "I completed the login form")
        assert [t.description for t in changes.completed] == ["Add login form"]
        assert tracker.check_pending("s1").allow

    def test_checked_box_completes(self, tracker):
        """A checked box completes the matching todo."""
        tracker.detect("s1", "- [ ] Write tests")
        changes = tracker.detect("s1", "- [x] Write tests")
        assert len(changes.completed) == 1
        assert tracker.pending("s1") == []

    def test_in_progress_box(self, tracker):
        """[-] creates an in-progress todo."""
        tracker.detect("s1", "* [-] Refactor parser")
        (todo,) = tracker.todos("s1")
        assert todo.in_progress
        assert todo.status == "in_progress"

    def test_duplicates_ignored(self, tracker):
        """Repeating a checkbox does not create a second todo."""
        tracker.detect("s1", "- [ ] Add login form\n- [ ] add LOGIN form")
        tracker.detect("s1", "- [ ] Add login form")
        assert len(tracker.todos("s1")) == 1

    def test_multiple_items(self, tracker):
        """Several checkboxes in one message are all tracked."""
        changes = tracker.detect("s1", "- [ ] one thing\n  - [ ] two thing\n+ [ ] three thing")
        assert len(changes.created) == 3

    def test_new_item_not_completed_by_its_own_wording(self, tracker):
        """Completion words inside a new checkbox line do not complete it."""
        changes = tracker.detect("s1", "- [ ] Finish the API docs\n- [ ] Complete the migration")
        assert changes.completed == []
        assert {t.description for t in tracker.pending("s1")} == {
            "Finish the API docs",
            "Complete the migration",
        }
        assert not tracker.check_pending("s1").allow

    def test_prose_in_same_message_completes_earlier_item(self, tracker):
        """Prose next to new checkboxes still completes older items."""
        tracker.detect("s1", "- [ ] Add login form")
        changes = tracker.detect("s1", "I completed the login form.\n- [ ] Write tests")
        assert [t.description for t in changes.completed] == ["Add login form"]
        assert [t.description for t in tracker.pending("s1")] == ["Write tests"]

    def test_whitespace_collapsed_on_create(self, tracker):
        """Descriptions are stored with single spaces and matched loosely."""
        tracker.detect("s1", "- [ ] Add  login\tform")
        (todo,) = tracker.todos("s1")
        assert todo.description == "Add login form"
        assert tracker.find_by_description("s1", "add   LOGIN form") is todo

    def test_empty_text(self, tracker):
        """Empty text changes nothing."""
        assert not tracker.detect("s1", "").changed

    def test_counts_synced_to_session(self, tracker, store):
        """Session counters mirror the tracker."""
        tracker.detect("s1", "- [ ] a task\n- [ ] b task")
        tracker.complete_by_description("s1", "a task")
        state = store.get("s1")
        assert (state.todo_count, state.todos_completed) == (2, 1)

    def test_detection_fails_open(self, tracker, monkeypatch):
        """A detection failure yields no changes instead of raising."""

        def explode(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(tracker, "_add", explode)
        assert not tracker.detect("s1", "- [ ] Something").changed


class TestStructuredSync:
    """Tests for todo lists written by a todo tool."""

    def test_sync_statuses(self, tracker):
        """Each status is applied to the tracked list."""
        changes = tracker.sync_structured(
            "s1",
            [
                {"content": "Alpha", "status": "pending"},
                {"content": "Beta", "status": "in_progress"},
                {"content": "Gamma", "status": "completed"},
            ],
        )
        assert len(changes.created) == 3
        assert [t.description for t in changes.completed] == ["Gamma"]
        summary = tracker.summary("s1")
        assert (summary.total, summary.pending, summary.completed) == (3, 2, 1)
        assert tracker.find_by_description("s1", "beta").in_progress

    def test_cancelled_removes(self, tracker, store):
        """Cancelled items are removed and counters updated."""
        tracker.sync_structured("s1", [{"content": "Alpha"}, {"content": "Beta"}])
        changes = tracker.sync_structured("s1", [{"content": "Alpha", "status": "cancelled"}])
        assert [t.description for t in changes.removed] == ["Alpha"]
        assert store.get("s1").todo_count == 1

    def test_invalid_entries_skipped(self, tracker):
        """Non-dict and empty entries are ignored."""
        tracker.sync_structured("s1", ["text", {"content": ""}, {"description": "Real"}])
        assert [t.description for t in tracker.todos("s1")] == ["Real"]


class TestExplicitOperations:
    """Tests for add/complete/remove/restore."""

    def test_add_and_complete(self, tracker):
        """complete() finishes a pending todo once."""
        item = tracker.add("s1", "Ship it")
        assert tracker.complete("s1", item.id)
        assert not tracker.complete("s1", item.id)
        assert tracker.completed("s1") == [item]

    def test_add_blank(self, tracker):
        """Blank descriptions are ignored."""
        assert tracker.add("s1", "   ") is None

    def test_remove(self, tracker):
        """remove() deletes by id."""
        item = tracker.add("s1", "Ship it")
        assert tracker.remove("s1", item.id)
        assert not tracker.remove("s1", item.id)

    def test_restore_pending(self, tracker, store):
        """Restored todos are added without touching session counters."""
        store.update_todos("s1", 5, 3)
        added = tracker.restore_pending("s1", [("Alpha", False), ("Beta", True), ("alpha", False)])
        assert added == 2
        assert tracker.find_by_description("s1", "Beta").in_progress
        assert store.get("s1").todo_count == 5

    def test_sessions_isolated(self, tracker, store):
        """Todos in one session do not block another."""
        store.get("s2")
        tracker.add("s1", "Only here")
        assert tracker.check_pending("s2").allow
        assert not tracker.check_pending("s1").allow

    def test_clear_session(self, tracker):
        """clear_session() drops the list."""
        tracker.add("s1", "Ship it")
        tracker.clear_session("s1")
        assert tracker.todos("s1") == []

    def test_gate_fails_open(self, tracker, monkeypatch):
        """A failing pending check allows the stop."""

        def explode(session_id):
            raise RuntimeError("boom")

        tracker.add("s1", "Ship it")
        monkeypatch.setattr(tracker, "pending", explode)
        assert tracker.check_pending("s1").allow
