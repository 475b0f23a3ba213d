"""
production_engines.transitions -- Step state machine evaluation.

Responsibility:
    Decide what a requested status change does to a step: apply an edge of
    ``STEP_WORKFLOW``, do nothing (same status re-issued), or ignore it
    (generic stop of a machine-backed step by a non-privileged caller).
    The service layer persists the decision; this module has zero I/O.

Architecture position:
    Engines -- pure calculation layer.  Imports only kernel domain types.

Invariants enforced:
    - Only edges declared in STEP_WORKFLOW are ever applied.
    - Re-issuing the current status is always a no-op, never an error.
    - planned -> stop is only allowed for steps that permit skipping.
    - A machine-backed step is stopped by its machine completing, or by a
      privileged caller; a generic stop from anyone else is ignored.

Failure modes:
    - InvalidTransitionError naming the current and requested status.
"""

from __future__ import annotations

from dataclasses import dataclass

from production_engines.tracer import traced_engine
from production_kernel.domain.dtos import TransitionOutcome
from production_kernel.domain.step_types import StepName, StepStatus
from production_kernel.domain.workflow import STEP_WORKFLOW, SKIPPABLE_STEP_GUARD, Transition
from production_kernel.exceptions import InvalidTransitionError


@dataclass(frozen=True, slots=True)
class TransitionDecision:
    """What to do with a requested status change."""

    outcome: TransitionOutcome
    from_status: StepStatus
    to_status: StepStatus
    transition: Transition | None = None
    reason: str | None = None

    @property
    def stamps_start(self) -> bool:
        return self.transition is not None and self.transition.sets_start

    @property
    def stamps_end(self) -> bool:
        return self.transition is not None and self.transition.sets_end

    @property
    def is_applied(self) -> bool:
        return self.outcome is TransitionOutcome.APPLIED


@traced_engine(
    "step_transition", "1.0",
    fingerprint_fields=("step_name", "current", "requested", "privileged", "machine_completion"),
)
def evaluate_transition(
    *,
    step_name: StepName,
    current: StepStatus,
    requested: StepStatus,
    privileged: bool = False,
    machine_completion: bool = False,
) -> TransitionDecision:
    """
    Evaluate one requested transition.

    Args:
        step_name: Type of the step being changed.
        current: The step's persisted status.
        requested: The status the caller asked for.
        privileged: Caller holds a privileged role.
        machine_completion: The request comes from a machine finishing its
            claim rather than from a generic status update.

    Returns:
        TransitionDecision with outcome APPLIED, NO_OP or IGNORED.

    Raises:
        InvalidTransitionError: requested edge is not part of the workflow.
    """
    if current is requested:
        return TransitionDecision(
            outcome=TransitionOutcome.NO_OP,
            from_status=current,
            to_status=requested,
            reason="status_unchanged",
        )

    transition = STEP_WORKFLOW.find(current, requested)
    if transition is None:
        raise InvalidTransitionError(step_name.value, current.value, requested.value)

    if transition.guard is SKIPPABLE_STEP_GUARD and not step_name.permits_skip:
        raise InvalidTransitionError(step_name.value, current.value, requested.value)

    if (
        requested is StepStatus.STOP
        and step_name.is_machine_backed
        and not privileged
        and not machine_completion
    ):
        return TransitionDecision(
            outcome=TransitionOutcome.IGNORED,
            from_status=current,
            to_status=current,
            transition=None,
            reason="machine_backed_stop_requires_machine_completion",
        )

    return TransitionDecision(
        outcome=TransitionOutcome.APPLIED,
        from_status=current,
        to_status=requested,
        transition=transition,
    )
