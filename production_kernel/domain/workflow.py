"""
Step workflow definition (``production_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the job-step state machine and the single
``STEP_WORKFLOW`` instance every step follows.  Transition *evaluation*
lives in ``production_engines.transitions``; this module only declares
which edges exist and which guard, if any, gates them.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* ``stop`` has no outgoing edge except into ``major_hold``.
"""

from __future__ import annotations

from dataclasses import dataclass

from production_kernel.domain.step_types import StepStatus


@dataclass(frozen=True)
class Guard:
    """A named condition that must hold before a transition fires.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the condition -- the transition engine does.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid edge in the step workflow."""
    from_state: StepStatus
    to_state: StepStatus
    action: str
    guard: Guard | None = None
    sets_start: bool = False
    sets_end: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition.

    Guarantees: ``initial_state`` is a member of ``states``; every transition
    connects two members of ``states``.
    """
    name: str
    description: str
    initial_state: StepStatus
    states: tuple[StepStatus, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[StepStatus, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(f"{self.name}: initial state {self.initial_state} not in states")
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"{self.name}: transition {t.action} uses unknown state"
                )

    def find(self, from_state: StepStatus, to_state: StepStatus) -> Transition | None:
        for t in self.transitions:
            if t.from_state is from_state and t.to_state is to_state:
                return t
        return None


SKIPPABLE_STEP_GUARD = Guard(
    name="step_permits_skip",
    description="Only steps with no physical work may stop without starting",
)

STEP_WORKFLOW = Workflow(
    name="job_step",
    description="Lifecycle of one planned production step",
    initial_state=StepStatus.PLANNED,
    states=(
        StepStatus.PLANNED,
        StepStatus.START,
        StepStatus.STOP,
        StepStatus.MAJOR_HOLD,
    ),
    transitions=(
        Transition(StepStatus.PLANNED, StepStatus.START, "start", sets_start=True),
        Transition(
            StepStatus.PLANNED, StepStatus.STOP, "skip",
            guard=SKIPPABLE_STEP_GUARD, sets_end=True,
        ),
        Transition(StepStatus.START, StepStatus.STOP, "stop", sets_end=True),
        Transition(StepStatus.START, StepStatus.MAJOR_HOLD, "major_hold"),
        Transition(StepStatus.STOP, StepStatus.MAJOR_HOLD, "major_hold"),
        Transition(StepStatus.MAJOR_HOLD, StepStatus.START, "resume", sets_start=True),
        Transition(StepStatus.MAJOR_HOLD, StepStatus.STOP, "stop", sets_end=True),
    ),
    terminal_states=(StepStatus.STOP,),
)
