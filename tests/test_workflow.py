"""Tests for the workflow phase engine and intent classification."""

import json

import pytest

from atreides.orchestrator.workflow import (
    INTENT_GUIDANCE,
    PHASE_GUIDANCE,
    WorkflowPhaseEngine,
    classify_intent,
    detect_phase_from_command,
    detect_phase_from_tool,
    generate_phase_guidance,
)
from atreides.state import IntentType, WorkflowPhase


@pytest.fixture
def engine(store):
    return WorkflowPhaseEngine(store)


class TestClassifyIntent:
    """Tests for keyword intent classification."""

    def test_highest_score_wins(self):
        """The category with the most keyword hits wins."""
        assert classify_intent("Fix the login bug") == IntentType.BUGFIX
        assert classify_intent("Add a new feature for exports") == IntentType.FEATURE
        assert classify_intent("Refactor and clean up the parser") == IntentType.REFACTOR

    def test_tie_goes_to_table_order(self):
        """Equal scores resolve to the earlier category."""
        assert classify_intent("explain this") == IntentType.EXPLORATION

    def test_no_match(self):
        """Text with no keywords is UNKNOWN."""
        assert classify_intent("hello there") == IntentType.UNKNOWN
        assert classify_intent("") == IntentType.UNKNOWN


class TestPhaseDetection:
    """Tests for tool and shell command phase suggestions."""

    def test_simple_tools(self):
        """Single-candidate tools map directly."""
        assert detect_phase_from_tool("read", WorkflowPhase.INTENT) == WorkflowPhase.EXPLORATION
        assert detect_phase_from_tool("Edit", WorkflowPhase.EXPLORATION) == WorkflowPhase.IMPLEMENTATION
        assert detect_phase_from_tool("lint", WorkflowPhase.IMPLEMENTATION) == WorkflowPhase.VERIFICATION

    def test_unknown_tool(self):
        """Tools without phase meaning suggest nothing."""
        assert detect_phase_from_tool("webfetch", WorkflowPhase.INTENT) is None

    def test_multi_candidate_prefers_next_phase(self):
        """Todo writes pick the first candidate ahead of the current phase."""
        assert detect_phase_from_tool("todowrite", WorkflowPhase.IDLE) == WorkflowPhase.INTENT
        assert detect_phase_from_tool("todowrite", WorkflowPhase.EXPLORATION) == WorkflowPhase.IMPLEMENTATION
        assert detect_phase_from_tool("todowrite", WorkflowPhase.VERIFICATION) == WorkflowPhase.INTENT

    @pytest.mark.parametrize(
        "command,expected",
        [
            ("ls -la", WorkflowPhase.EXPLORATION),
            ("git status", WorkflowPhase.EXPLORATION),
            ("mkdir -p src/new", WorkflowPhase.IMPLEMENTATION),
            ("npm install lodash", WorkflowPhase.IMPLEMENTATION),
            ("pytest tests/", WorkflowPhase.VERIFICATION),
            ("tsc --noEmit", WorkflowPhase.VERIFICATION),
        ],
    )
    def test_shell_commands(self, command, expected):
        """Shell commands are classified by their text."""
        assert detect_phase_from_command(WorkflowPhase.INTENT, {"command": command}) == expected

    def test_state_changing_commands_checked_first(self):
        """Mutating commands win over read-only ones in the same line."""
        command = {"command": "git add . && git status"}
        assert detect_phase_from_command(WorkflowPhase.EXPLORATION, command) == WorkflowPhase.IMPLEMENTATION
        command = {"command": "git commit -m 'fix test'"}
        assert detect_phase_from_command(WorkflowPhase.EXPLORATION, command) == WorkflowPhase.IMPLEMENTATION

    def test_unrecognized_command(self):
        """Unknown commands are exploration early on, otherwise keep the phase."""
        command = {"command": "echo hi"}
        assert detect_phase_from_command(WorkflowPhase.INTENT, command) == WorkflowPhase.EXPLORATION
        assert detect_phase_from_command(WorkflowPhase.IMPLEMENTATION, command) == WorkflowPhase.IMPLEMENTATION


class TestGuidance:
    """Tests for phase guidance text."""

    def test_idle_has_no_guidance(self):
        """IDLE produces no guidance."""
        assert generate_phase_guidance(WorkflowPhase.IDLE, IntentType.FEATURE) == ""

    def test_guidance_with_intent(self):
        """Known intents append one line."""
        text = generate_phase_guidance(WorkflowPhase.EXPLORATION, IntentType.BUGFIX)
        assert text.startswith(PHASE_GUIDANCE[WorkflowPhase.EXPLORATION])
        assert text.endswith(INTENT_GUIDANCE[IntentType.BUGFIX])

    def test_guidance_unknown_intent(self):
        """UNKNOWN intent adds nothing."""
        assert generate_phase_guidance(WorkflowPhase.INTENT, IntentType.UNKNOWN) == PHASE_GUIDANCE[WorkflowPhase.INTENT]


class TestWorkflowPhaseEngine:
    """Tests for tool-driven transitions."""

    def test_read_while_idle_is_rejected(self, engine, store):
        """idle -> exploration is not a valid transition."""
        store.get("s1")
        assert engine.update_phase("read", "s1") == WorkflowPhase.IDLE
        assert engine.get_phase_history("s1") == []

    def test_read_after_intent(self, engine, store):
        """Once in INTENT, reading moves to EXPLORATION."""
        store.get("s1")
        assert engine.start_workflow("s1", "fix the crash")
        assert store.get("s1").workflow.intent == IntentType.BUGFIX
        assert engine.update_phase("read", "s1") == WorkflowPhase.EXPLORATION

    def test_full_cycle(self, engine, store):
        """A complete cycle ends with the workflow marked complete."""
        store.get("s1")
        engine.start_workflow("s1")
        engine.update_phase("grep", "s1")
        engine.update_phase("edit", "s1")
        assert engine.update_phase("bash", "s1", {"command": "npm test"}) == WorkflowPhase.VERIFICATION
        assert engine.transition("s1", WorkflowPhase.IDLE)
        assert engine.is_workflow_complete("s1")
        phases = [t.to_phase for t in engine.get_phase_history("s1")]
        assert phases == [
            WorkflowPhase.INTENT,
            WorkflowPhase.EXPLORATION,
            WorkflowPhase.IMPLEMENTATION,
            WorkflowPhase.VERIFICATION,
            WorkflowPhase.IDLE,
        ]

    def test_skipping_phases_rejected(self, engine, store):
        """INTENT cannot jump straight to IMPLEMENTATION."""
        store.get("s1")
        engine.start_workflow("s1")
        assert engine.update_phase("edit", "s1") == WorkflowPhase.INTENT
        assert not engine.transition("s1", WorkflowPhase.VERIFICATION)

    def test_start_workflow_only_from_idle(self, engine, store):
        """A second start only reclassifies the intent."""
        store.get("s1")
        assert engine.start_workflow("s1", "add a button")
        assert not engine.start_workflow("s1", "fix the bug")
        assert store.get("s1").phase == WorkflowPhase.INTENT
        assert store.get("s1").workflow.intent == IntentType.BUGFIX

    def test_unknown_session(self, engine):
        """Unknown sessions are ignored."""
        assert engine.update_phase("read", "ghost") == WorkflowPhase.IDLE
        assert not engine.transition("ghost", WorkflowPhase.INTENT)
        assert not engine.start_workflow("ghost")
        assert engine.guidance_for("ghost") == ""

    def test_reset_workflow(self, engine, store):
        """reset_workflow returns to a fresh IDLE workflow."""
        state = store.get("s1")
        engine.start_workflow("s1")
        state.workflow_started = True
        engine.reset_workflow("s1")
        assert state.phase == WorkflowPhase.IDLE
        assert state.workflow_started is False
        assert engine.get_phase_history("s1") == []

    def test_phase_change_logged(self, engine, store, isolated_logs):
        """Accepted transitions are written to session.jsonl."""
        store.get("s1")
        engine.start_workflow("s1")
        lines = isolated_logs.session_log_path.read_text().splitlines()
        entry = json.loads(lines[-1])
        assert entry["event_type"] == "phase_change"
        assert entry["from_phase"] == "idle"
        assert entry["to_phase"] == "intent"
        assert entry["session_id"] == "s1"
