"""
Data Transfer Objects for the production workflow.

Immutable value objects passed between engines, services and the
orchestrator.  Services convert ORM rows into these snapshots at the
boundary so that pure engines never see a Session.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID

from production_kernel.domain.step_types import (
    ClaimStatus,
    DetailStatus,
    JobDemand,
    StepName,
    StepStatus,
)

# ---------------------------------------------------------------------------
# Callers and machines
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Actor:
    """
    The authenticated caller of a workflow operation.

    Supplied by the authentication layer.  ``machine_ids`` are the machines
    the operator is assigned to; it is only consulted for normal-demand jobs.
    """

    user_id: str
    roles: frozenset[str] = frozenset()
    machine_ids: frozenset[UUID] = frozenset()

    def __post_init__(self) -> None:
        if not self.user_id:
            raise ValueError("Actor.user_id must be non-empty")
        object.__setattr__(self, "roles", frozenset(r.lower() for r in self.roles))
        object.__setattr__(self, "machine_ids", frozenset(self.machine_ids))


@dataclass(frozen=True)
class MachineInfo:
    machine_id: UUID
    machine_code: str
    machine_type: str
    unit: str | None = None
    is_active: bool = True

    def as_details(self) -> dict[str, str | None]:
        return {
            "machine_id": str(self.machine_id),
            "machine_code": self.machine_code,
            "machine_type": self.machine_type,
            "unit": self.unit,
        }


@dataclass(frozen=True)
class MachineCatalog:
    """Read-only snapshot of the machine registry for one request."""

    machines: tuple[MachineInfo, ...] = ()

    def get(self, machine_id: UUID) -> MachineInfo | None:
        for machine in self.machines:
            if machine.machine_id == machine_id:
                return machine
        return None

    def of_types(self, machine_types: tuple[str, ...]) -> tuple[MachineInfo, ...]:
        """Active machines whose type is one of ``machine_types``, by code."""
        wanted = set(machine_types)
        return tuple(
            sorted(
                (m for m in self.machines if m.is_active and m.machine_type in wanted),
                key=lambda m: m.machine_code,
            )
        )


# ---------------------------------------------------------------------------
# Step snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DetailSnapshot:
    """The parts of a step detail record that dependency rules read."""

    status: DetailStatus
    quantity: int | None = None
    rejected_quantity: int | None = None
    qc_check_sign_by: str | None = None
    qc_check_at: datetime | None = None

    @property
    def is_accepted(self) -> bool:
        return self.status is DetailStatus.ACCEPT

    @property
    def is_signed_off(self) -> bool:
        return (
            self.quantity is not None
            and self.rejected_quantity is not None
            and bool(self.qc_check_sign_by)
            and self.qc_check_at is not None
        )


@dataclass(frozen=True)
class StepSnapshot:
    step_id: UUID
    step_no: int
    step_name: StepName
    status: StepStatus
    detail: DetailSnapshot | None = None


@dataclass(frozen=True)
class StepRecord:
    """Persisted state of one step, as returned to callers."""

    step_id: UUID
    job_planning_id: UUID
    nrc_job_no: str
    step_no: int
    step_name: StepName
    status: StepStatus
    start_date: datetime | None
    end_date: datetime | None
    started_by: str | None
    completed_by: str | None


@dataclass(frozen=True)
class PlanningSnapshot:
    """A job's selected planning with its ordered steps."""

    job_planning_id: UUID
    nrc_job_no: str
    job_demand: JobDemand
    purchase_order_id: UUID | None
    steps: tuple[StepSnapshot, ...]

    @property
    def is_high_demand(self) -> bool:
        return self.job_demand is JobDemand.HIGH

    def step(self, step_no: int) -> StepSnapshot | None:
        for s in self.steps:
            if s.step_no == step_no:
                return s
        return None


# ---------------------------------------------------------------------------
# Machine claims
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClaimSnapshot:
    claim_id: UUID
    machine_id: UUID
    started_by_machine_id: UUID | None
    status: ClaimStatus
    started_at: datetime | None = None
    operator_id: str | None = None

    @property
    def is_owner_claim(self) -> bool:
        return self.started_by_machine_id is not None


@dataclass(frozen=True)
class VisibleMachine:
    """One machine entry a requesting operator may see for a step."""

    machine_id: UUID
    machine_code: str
    machine_type: str
    unit: str | None
    claim_status: ClaimStatus
    is_owner: bool


@dataclass(frozen=True)
class HeldMachine:
    claim_id: UUID
    nrc_job_no: str
    step_no: int
    step_name: StepName
    machine_id: UUID
    machine_code: str | None
    operator_id: str | None
    hold_remark: str | None
    started_at: datetime | None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class TransitionOutcome(str, Enum):
    """What a transition request did to the step."""

    APPLIED = "applied"
    NO_OP = "no_op"
    IGNORED = "ignored"


@dataclass(frozen=True)
class DispatchOutcome:
    """Result of one dispatch reconciliation."""

    requested_quantity: int
    actual_quantity: int
    excess_quantity: int
    previous_total: int
    new_total: int
    finished_goods_consumed: int
    shortfall: int
    detail_status: DetailStatus
    excess_entry_id: UUID | None = None
    leftover_entry_id: UUID | None = None


@dataclass(frozen=True)
class CompletionResult:
    completed: bool
    reason: str | None = None
    completed_job_id: UUID | None = None


@dataclass(frozen=True)
class TransitionResult:
    outcome: TransitionOutcome
    previous_status: StepStatus
    step: StepRecord
    dispatch: DispatchOutcome | None = None
    completion: CompletionResult | None = None

    @property
    def changed(self) -> bool:
        return self.outcome is TransitionOutcome.APPLIED


@dataclass(frozen=True)
class FinishedGoodsSummary:
    nrc_job_no: str
    total_available: int
    total_consumed: int
    entry_count: int
    available_entry_ids: tuple[UUID, ...] = field(default_factory=tuple)
