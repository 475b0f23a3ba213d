"""
Tests for the step state machine.

Covers:
- Forward edges and the timestamps they stamp
- Skip guard on planned -> stop
- major_hold side-state
- Idempotent re-issue of the current status
- Machine-backed stop handling
"""

import pytest

from production_engines.transitions import evaluate_transition
from production_kernel.domain.dtos import TransitionOutcome
from production_kernel.domain.step_types import StepName, StepStatus
from production_kernel.domain.workflow import STEP_WORKFLOW
from production_kernel.exceptions import InvalidTransitionError

MACHINE_BACKED = [s for s in StepName if s.is_machine_backed]


class TestForwardEdges:
    """planned -> start -> stop."""

    def test_planned_to_start_stamps_start(self):
        """Starting a step stamps the start date."""
        decision = evaluate_transition(
            step_name=StepName.PAPER_STORE,
            current=StepStatus.PLANNED,
            requested=StepStatus.START,
        )

        assert decision.outcome is TransitionOutcome.APPLIED
        assert decision.to_status is StepStatus.START
        assert decision.stamps_start
        assert not decision.stamps_end

    def test_start_to_stop_stamps_end(self):
        """Stopping a started step stamps the end date."""
        decision = evaluate_transition(
            step_name=StepName.QUALITY_DEPT,
            current=StepStatus.START,
            requested=StepStatus.STOP,
        )

        assert decision.is_applied
        assert decision.stamps_end
        assert not decision.stamps_start

    def test_stop_is_terminal(self):
        """stop -> start is not an edge."""
        with pytest.raises(InvalidTransitionError, match="stop -> start"):
            evaluate_transition(
                step_name=StepName.PAPER_STORE,
                current=StepStatus.STOP,
                requested=StepStatus.START,
            )

    def test_cannot_return_to_planned(self):
        """No request may move a step back to planned."""
        with pytest.raises(InvalidTransitionError):
            evaluate_transition(
                step_name=StepName.PAPER_STORE,
                current=StepStatus.START,
                requested=StepStatus.PLANNED,
            )

    def test_error_names_both_states(self):
        """InvalidTransitionError carries the current and requested status."""
        with pytest.raises(InvalidTransitionError) as exc_info:
            evaluate_transition(
                step_name=StepName.DISPATCH_PROCESS,
                current=StepStatus.STOP,
                requested=StepStatus.PLANNED,
            )

        assert exc_info.value.current_status == "stop"
        assert exc_info.value.requested_status == "planned"


class TestSkipGuard:
    """planned -> stop only for steps with no physical work."""

    @pytest.mark.parametrize("step_name", [StepName.PAPER_STORE, StepName.QUALITY_DEPT])
    def test_skippable_steps(self, step_name):
        decision = evaluate_transition(
            step_name=step_name,
            current=StepStatus.PLANNED,
            requested=StepStatus.STOP,
        )

        assert decision.is_applied
        assert decision.stamps_end

    @pytest.mark.parametrize(
        "step_name", [StepName.DISPATCH_PROCESS, StepName.PUNCHING, StepName.CORRUGATION]
    )
    def test_non_skippable_steps(self, step_name):
        with pytest.raises(InvalidTransitionError):
            evaluate_transition(
                step_name=step_name,
                current=StepStatus.PLANNED,
                requested=StepStatus.STOP,
                privileged=True,
            )


class TestMajorHold:
    """major_hold side-state."""

    def test_start_to_major_hold(self):
        decision = evaluate_transition(
            step_name=StepName.PUNCHING,
            current=StepStatus.START,
            requested=StepStatus.MAJOR_HOLD,
        )

        assert decision.is_applied
        assert not decision.stamps_start
        assert not decision.stamps_end

    def test_stop_to_major_hold_escape(self):
        """stop is terminal except for the major_hold escape."""
        decision = evaluate_transition(
            step_name=StepName.DISPATCH_PROCESS,
            current=StepStatus.STOP,
            requested=StepStatus.MAJOR_HOLD,
        )

        assert decision.is_applied

    def test_resume_from_major_hold(self):
        decision = evaluate_transition(
            step_name=StepName.PAPER_STORE,
            current=StepStatus.MAJOR_HOLD,
            requested=StepStatus.START,
        )

        assert decision.is_applied
        assert decision.to_status is StepStatus.START

    def test_planned_cannot_hold(self):
        with pytest.raises(InvalidTransitionError):
            evaluate_transition(
                step_name=StepName.PAPER_STORE,
                current=StepStatus.PLANNED,
                requested=StepStatus.MAJOR_HOLD,
            )


class TestIdempotence:
    """Re-issuing the current status."""

    @pytest.mark.parametrize("status", list(StepStatus))
    def test_same_status_is_no_op(self, status):
        """Every status re-issued on itself is a no-op, never an error."""
        decision = evaluate_transition(
            step_name=StepName.DISPATCH_PROCESS,
            current=status,
            requested=status,
        )

        assert decision.outcome is TransitionOutcome.NO_OP
        assert decision.transition is None

    def test_no_op_checked_before_machine_rule(self):
        """A repeated stop on a stopped machine-backed step is a no-op, not ignored."""
        decision = evaluate_transition(
            step_name=StepName.PUNCHING,
            current=StepStatus.STOP,
            requested=StepStatus.STOP,
        )

        assert decision.outcome is TransitionOutcome.NO_OP


class TestMachineBackedStop:
    """Generic stop of machine-backed steps."""

    @pytest.mark.parametrize("step_name", MACHINE_BACKED)
    def test_generic_stop_ignored_for_operator(self, step_name):
        decision = evaluate_transition(
            step_name=step_name,
            current=StepStatus.START,
            requested=StepStatus.STOP,
        )

        assert decision.outcome is TransitionOutcome.IGNORED
        assert decision.to_status is StepStatus.START

    def test_privileged_stop_applies(self):
        decision = evaluate_transition(
            step_name=StepName.CORRUGATION,
            current=StepStatus.START,
            requested=StepStatus.STOP,
            privileged=True,
        )

        assert decision.is_applied

    def test_machine_completion_applies(self):
        decision = evaluate_transition(
            step_name=StepName.SIDE_FLAP_PASTING,
            current=StepStatus.START,
            requested=StepStatus.STOP,
            machine_completion=True,
        )

        assert decision.is_applied
        assert decision.stamps_end

    def test_invalid_edge_reported_before_ignoring(self):
        """planned -> stop on a machine-backed step is invalid, not ignored."""
        with pytest.raises(InvalidTransitionError):
            evaluate_transition(
                step_name=StepName.PRINTING_DETAILS,
                current=StepStatus.PLANNED,
                requested=StepStatus.STOP,
            )


class TestWorkflowDefinition:
    """The declared workflow itself."""

    def test_every_edge_is_reachable_from_planned(self):
        reachable = {STEP_WORKFLOW.initial_state}
        changed = True
        while changed:
            changed = False
            for t in STEP_WORKFLOW.transitions:
                if t.from_state in reachable and t.to_state not in reachable:
                    reachable.add(t.to_state)
                    changed = True

        assert reachable == set(StepStatus)
