"""
Unit Tests for the Pipeline State Machine
"""
import pytest

from app.core.exceptions import InvalidPipelineTransitionError
from app.modules.orchestrator.state_machine import (
    PIPELINE_TRANSITIONS,
    TERMINAL_STATES,
    PipelineState,
    PipelineStateMachine,
    StageDegraded,
    StageFailure,
    StageSuccess,
)


GENERATION_PATH = [
    PipelineState.MATERIALIZING,
    PipelineState.GENERATING,
    PipelineState.PARSING,
    PipelineState.PERSISTING,
    PipelineState.PACKAGING,
    PipelineState.BUILDING,
    PipelineState.DEPLOYING,
    PipelineState.FINALIZING,
    PipelineState.DONE,
]


class TestPipelineStateMachine:
    """Test pipeline state transitions"""

    def test_initial_state(self):
        sm = PipelineStateMachine("build-1")
        assert sm.state == PipelineState.RESOLVING
        assert sm.is_terminal is False

    def test_full_generation_path(self):
        sm = PipelineStateMachine("build-1")
        for state in GENERATION_PATH:
            sm.transition(state)

        assert sm.state == PipelineState.DONE
        assert sm.is_terminal is True
        assert len(sm.get_history()) == len(GENERATION_PATH)

    def test_modification_can_skip_parsing(self):
        sm = PipelineStateMachine("build-1")
        sm.transition(PipelineState.MATERIALIZING)
        sm.transition(PipelineState.MODIFYING)
        sm.transition(PipelineState.PERSISTING)
        assert sm.state == PipelineState.PERSISTING

    def test_build_failure_goes_to_finalizing(self):
        sm = PipelineStateMachine("build-1")
        for state in GENERATION_PATH[:6]:
            sm.transition(state)
        sm.transition(PipelineState.FINALIZING, reason="build failed")

        assert sm.get_history(1)[0].reason == "build failed"

    def test_invalid_transition_raises(self):
        sm = PipelineStateMachine("build-1")
        with pytest.raises(InvalidPipelineTransitionError):
            sm.transition(PipelineState.DEPLOYING)
        assert sm.state == PipelineState.RESOLVING

    def test_terminal_states_have_no_exits(self):
        for state in TERMINAL_STATES:
            assert PIPELINE_TRANSITIONS[state] == set()

    def test_failed_reachable_from_every_active_state(self):
        for state, targets in PIPELINE_TRANSITIONS.items():
            if state not in TERMINAL_STATES:
                assert PipelineState.FAILED in targets

    def test_duplicate_only_from_resolving(self):
        sources = [s for s, targets in PIPELINE_TRANSITIONS.items() if PipelineState.DUPLICATE_SHORT_CIRCUIT in targets]
        assert sources == [PipelineState.RESOLVING]

    def test_history_is_bounded(self):
        sm = PipelineStateMachine("build-1", max_history=3)
        for state in GENERATION_PATH:
            sm.transition(state)
        assert [t.to_state for t in sm.get_history()] == ["deploying", "finalizing", "done"]


class TestStageResults:
    """Test the tagged stage results"""

    def test_kinds(self):
        assert StageSuccess(PipelineState.PARSING).kind == "success"
        assert StageDegraded(PipelineState.MATERIALIZING, "template fallback").kind == "degraded"
        assert StageFailure(PipelineState.BUILDING, RuntimeError("x")).kind == "failure"

    def test_failure_fatal_by_default(self):
        assert StageFailure(PipelineState.PARSING, RuntimeError("x")).fatal is True
        assert StageFailure(PipelineState.BUILDING, RuntimeError("x"), fatal=False).fatal is False
