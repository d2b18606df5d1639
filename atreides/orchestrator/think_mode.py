"""
Atreides - Think Mode

Per-session model selection. Requests are scored for complexity by keyword
indicators; complex work or repeated errors move a session to the "think"
model, trivial edits to the "fast" model. The chat-params hook rewrites
only the model name and leaves every other parameter alone.
"""

import logging
import re
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any

from atreides.config import ThinkModeConfig
from atreides.session import SessionStore

logger = logging.getLogger(__name__)

COMPLEXITY_INDICATORS = [
    re.compile(p, re.I)
    for p in (
        r"architect",
        r"design pattern",
        r"refactor",
        r"security",
        r"performance",
        r"multi-?step",
        r"complex",
        r"tradeoff",
        r"debug.*fail",
    )
]

FAST_TASK_INDICATORS = [
    re.compile(p, re.I)
    for p in (
        r"simple",
        r"quick",
        r"just\s+(add|remove|change)",
        r"typo",
        r"format",
        r"lint",
        r"rename",
    )
]

INDICATOR_WEIGHT = 0.15
FAST_INDICATOR_WEIGHT = 0.1
FAST_THRESHOLD = 0.2
ERROR_SWITCH_COUNT = 2
MAX_PERFORMANCE_HISTORY = 100


class ThinkModeState(Enum):
    DEFAULT = "default"
    THINK = "think"
    FAST = "fast"


@dataclass
class PerformanceSample:
    session_id: str
    model: str
    response_time_ms: float


def estimate_complexity(text: str | None) -> float:
    """
    Score a request between 0 (trivial) and 1 (complex).

    Each complexity indicator adds 0.15 and each fast-task indicator
    subtracts 0.1; long requests (over 500 and 1000 characters) and
    requests with more than ten lines score higher.
    """
    if not text:
        return 0.0

    score = 0.0
    score += sum(INDICATOR_WEIGHT for p in COMPLEXITY_INDICATORS if p.search(text))
    score -= sum(FAST_INDICATOR_WEIGHT for p in FAST_TASK_INDICATORS if p.search(text))

    if len(text) > 500:
        score += 0.1
    if len(text) > 1000:
        score += 0.1
    if text.count("\n") > 10:
        score += 0.05

    return max(0.0, min(1.0, round(score, 4)))


class ThinkModeManager:
    """Tracks the think/fast/default state of every session."""

    def __init__(self, store: SessionStore, config: ThinkModeConfig | None = None):
        self.store = store
        self.config = config or ThinkModeConfig()
        self._states: dict[str, ThinkModeState] = {}
        self._performance: deque[PerformanceSample] = deque(maxlen=MAX_PERFORMANCE_HISTORY)

    def get_state(self, session_id: str) -> ThinkModeState:
        return self._states.get(session_id, ThinkModeState.DEFAULT)

    def _set_state(self, session_id: str, state: ThinkModeState) -> None:
        previous = self.get_state(session_id)
        self._states[session_id] = state
        if previous != state:
            logger.info(f"Think mode for {session_id}: {previous.value} -> {state.value}")

    def activate(self, session_id: str) -> None:
        if not self.config.enabled:
            logger.debug(f"Think mode disabled, not activating for {session_id}")
            return
        self._set_state(session_id, ThinkModeState.THINK)

    def set_fast_mode(self, session_id: str) -> None:
        if not self.config.enabled:
            logger.debug(f"Think mode disabled, not switching {session_id} to fast")
            return
        self._set_state(session_id, ThinkModeState.FAST)

    def deactivate(self, session_id: str) -> None:
        self._set_state(session_id, ThinkModeState.DEFAULT)

    def get_model_for_state(self, state: ThinkModeState) -> str:
        if state == ThinkModeState.THINK:
            return self.config.think_model
        if state == ThinkModeState.FAST:
            return self.config.fast_model
        return self.config.default_model

    def should_auto_switch(self, session_id: str, message: str | None = None) -> ThinkModeState | None:
        """
        Suggest a state for a session still in default mode.

        Two or more consecutive errors suggest THINK. Otherwise the message
        is scored: at or above the configured threshold suggests THINK,
        below 0.2 suggests FAST.

        Returns:
            The suggested state, or None to leave the session as it is
        """
        if not self.config.enabled or not self.config.auto_switch:
            return None
        if self.get_state(session_id) != ThinkModeState.DEFAULT:
            return None

        state = self.store.get_or_none(session_id)
        if state is not None and state.error_count >= ERROR_SWITCH_COUNT:
            logger.debug(f"Switching {session_id} to think mode after {state.error_count} errors")
            return ThinkModeState.THINK

        if message:
            complexity = estimate_complexity(message)
            if complexity >= self.config.complexity_threshold:
                return ThinkModeState.THINK
            if complexity < FAST_THRESHOLD:
                return ThinkModeState.FAST
        return None

    def apply_auto_switch(self, session_id: str, message: str | None = None) -> ThinkModeState:
        suggested = self.should_auto_switch(session_id, message)
        if suggested is not None:
            self._set_state(session_id, suggested)
        return self.get_state(session_id)

    def chat_params(self, session_id: str, params: dict[str, Any]) -> dict[str, Any]:
        """
        Return chat parameters with the model for the session's state.

        Params are returned unchanged when think mode is disabled or no
        model is configured for the state.
        """
        if not self.config.enabled:
            return params

        state = self.apply_auto_switch(session_id)
        model = self.get_model_for_state(state)
        if not model:
            return params
        logger.debug(f"Chat model for {session_id} ({state.value}): {params.get('model')} -> {model}")
        return {**params, "model": model}

    def record_performance(self, session_id: str, model: str, response_time_ms: float) -> None:
        if not self.config.track_performance:
            return
        self._performance.append(PerformanceSample(session_id, model, response_time_ms))

    def get_performance_stats(self) -> dict[str, dict[str, float]]:
        """Average response time and sample count per model."""
        totals: dict[str, list[float]] = {}
        for sample in self._performance:
            totals.setdefault(sample.model, []).append(sample.response_time_ms)
        return {
            "average_response_time_ms": {m: sum(t) / len(t) for m, t in totals.items()},
            "sample_count": {m: len(t) for m, t in totals.items()},
        }

    def clear_session(self, session_id: str) -> None:
        self._states.pop(session_id, None)
