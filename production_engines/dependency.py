"""
production_engines.dependency -- Inter-step dependency resolver.

Responsibility:
    Given every step of a planning and a target step, decide whether the
    target may currently start (or stop), and if not, which predecessors
    block it.  Independent of the target's own state-machine status.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Rules (by target step type):
    PaperStore                  -- none.
    PrintingDetails, Corrugation
                                -- PaperStore's detail record exists and is
                                   accepted.  The two never wait on each other.
    FluteLaminateBoardConversion, Punching, SideFlapPasting, QualityDept
                                -- every planned PrintingDetails/Corrugation
                                   step has an accepted detail record.
    DispatchProcess             -- QualityDept is signed off: pass and
                                   rejected quantities recorded, plus a
                                   signer and a sign-off time.
    Fallback                    -- when a rule's anchor steps are all absent
                                   from the plan, the closest earlier step
                                   (outside the target's own parallel group)
                                   must have an accepted detail record.

    At START every required predecessor must itself have started
    (start / stop / major_hold); at STOP it must have stopped.  A
    predecessor that is not in the plan is satisfied.

Failure modes:
    - DependencyNotSatisfiedError from ``require_dependencies``, carrying
      unmet predecessor names in step order, e.g.
      ``"Corrugation (must be accepted)"``.
    - ValueError if the target step number is not in the plan.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from production_engines.tracer import traced_engine
from production_kernel.domain.dtos import StepSnapshot
from production_kernel.domain.step_types import PARALLEL_GROUP, StepName, StepStatus
from production_kernel.exceptions import DependencyNotSatisfiedError


class DependencyPhase(str, Enum):
    """When the check runs."""

    START = "start"
    STOP = "stop"


class DependencyRule(str, Enum):
    NONE = "none"
    PAPER_STORE_ACCEPTED = "paper_store_accepted"
    PARALLEL_GROUP_ACCEPTED = "parallel_group_accepted"
    QUALITY_SIGNED_OFF = "quality_signed_off"


class _Requirement(str, Enum):
    ACCEPTED = "accepted"
    SIGNED_OFF = "signed_off"


RULES: dict[StepName, DependencyRule] = {
    StepName.PAPER_STORE: DependencyRule.NONE,
    StepName.PRINTING_DETAILS: DependencyRule.PAPER_STORE_ACCEPTED,
    StepName.CORRUGATION: DependencyRule.PAPER_STORE_ACCEPTED,
    StepName.FLUTE_LAMINATE_BOARD_CONVERSION: DependencyRule.PARALLEL_GROUP_ACCEPTED,
    StepName.PUNCHING: DependencyRule.PARALLEL_GROUP_ACCEPTED,
    StepName.SIDE_FLAP_PASTING: DependencyRule.PARALLEL_GROUP_ACCEPTED,
    StepName.QUALITY_DEPT: DependencyRule.PARALLEL_GROUP_ACCEPTED,
    StepName.DISPATCH_PROCESS: DependencyRule.QUALITY_SIGNED_OFF,
}

_missing_rules = set(StepName) - set(RULES)
if _missing_rules:
    raise RuntimeError(f"Dependency rules missing for: {sorted(s.value for s in _missing_rules)}")

_STARTED = frozenset({StepStatus.START, StepStatus.STOP, StepStatus.MAJOR_HOLD})


@dataclass(frozen=True, slots=True)
class DependencyCheck:
    """Outcome of a dependency evaluation."""

    step_name: StepName
    phase: DependencyPhase
    rule: DependencyRule
    required: tuple[StepName, ...]
    unmet: tuple[str, ...]

    @property
    def satisfied(self) -> bool:
        return not self.unmet


def _anchors(
    rule: DependencyRule, predecessors: Sequence[StepSnapshot]
) -> tuple[list[StepSnapshot], _Requirement]:
    if rule is DependencyRule.NONE:
        return [], _Requirement.ACCEPTED
    if rule is DependencyRule.PAPER_STORE_ACCEPTED:
        return [s for s in predecessors if s.step_name is StepName.PAPER_STORE], _Requirement.ACCEPTED
    if rule is DependencyRule.PARALLEL_GROUP_ACCEPTED:
        return [s for s in predecessors if s.step_name in PARALLEL_GROUP], _Requirement.ACCEPTED
    return [s for s in predecessors if s.step_name is StepName.QUALITY_DEPT], _Requirement.SIGNED_OFF


def _fallback(target: StepSnapshot, predecessors: Sequence[StepSnapshot]) -> list[StepSnapshot]:
    candidates = [
        s for s in predecessors
        if not (target.step_name.is_parallel_group and s.step_name.is_parallel_group)
    ]
    return candidates[-1:]


def _unmet_reason(
    step: StepSnapshot, requirement: _Requirement, phase: DependencyPhase
) -> str | None:
    name = step.step_name.value
    if step.detail is None:
        return name
    if requirement is _Requirement.SIGNED_OFF:
        if not step.detail.is_signed_off:
            return f"{name} (must be signed off)"
    elif not step.detail.is_accepted:
        return f"{name} (must be accepted)"

    if phase is DependencyPhase.START and step.status not in _STARTED:
        return f"{name} (must be started)"
    if phase is DependencyPhase.STOP and step.status is not StepStatus.STOP:
        return f"{name} (must be completed)"
    return None


@traced_engine("dependency_resolver", "1.0", fingerprint_fields=("target_step_no", "phase"))
def check_dependencies(
    *,
    steps: Sequence[StepSnapshot],
    target_step_no: int,
    phase: DependencyPhase,
) -> DependencyCheck:
    """
    Evaluate the dependency rule for one target step.

    Args:
        steps: Every step of the planning (any order).
        target_step_no: Step number being transitioned.
        phase: START or STOP.

    Returns:
        DependencyCheck; ``satisfied`` is True when nothing is unmet.

    Raises:
        ValueError: target_step_no is not in ``steps``.
    """
    ordered = sorted(steps, key=lambda s: s.step_no)
    target = next((s for s in ordered if s.step_no == target_step_no), None)
    if target is None:
        raise ValueError(f"Step {target_step_no} is not part of the planning")

    rule = RULES[target.step_name]
    predecessors = [s for s in ordered if s.step_no < target.step_no]

    required, requirement = _anchors(rule, predecessors)
    if rule is not DependencyRule.NONE and not required:
        required = _fallback(target, predecessors)
        requirement = _Requirement.ACCEPTED

    unmet = tuple(
        reason
        for reason in (_unmet_reason(s, requirement, phase) for s in required)
        if reason is not None
    )
    return DependencyCheck(
        step_name=target.step_name,
        phase=phase,
        rule=rule,
        required=tuple(s.step_name for s in required),
        unmet=unmet,
    )


def require_dependencies(
    *,
    steps: Sequence[StepSnapshot],
    target_step_no: int,
    phase: DependencyPhase,
) -> DependencyCheck:
    """Like ``check_dependencies`` but raises when anything is unmet."""
    check = check_dependencies(steps=steps, target_step_no=target_step_no, phase=phase)
    if not check.satisfied:
        raise DependencyNotSatisfiedError(check.step_name.value, check.unmet)
    return check
