"""
Module: production_kernel.models.planning
Responsibility: ORM persistence for job plannings and their ordered steps --
    the Step Ledger.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - (job_planning_id, step_no) is unique (uq_job_step_planning_step_no).
    - A step's status only changes through StepStateService, which writes
      with a compare-and-set on the observed status.
    - start_date is set only by a transition into ``start``; end_date only
      by a transition into ``stop``.

Failure modes:
    - IntegrityError on duplicate step_no within a planning.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from production_kernel.db.base import Base, UUIDString
from production_kernel.db.types import JobNumber, Quantity
from production_kernel.domain.step_types import JobDemand, StepName, StepStatus

if TYPE_CHECKING:
    from production_kernel.models.machine_claim import MachineClaim
    from production_kernel.models.step_detail import StepDetailRecord


class JobPlanning(Base):
    """
    One planning version for a job: the ordered steps it must go through.

    Guarantees:
        - steps are loaded in step_no order.
        - Deleting a planning deletes its steps, claims and detail records.

    Non-goals:
        - Choosing among several plannings for the same job is done by
          planning_selector, not here.
    """

    __tablename__ = "job_plannings"

    __table_args__ = (
        Index("idx_job_planning_job", "nrc_job_no"),
    )

    nrc_job_no: Mapped[JobNumber] = mapped_column(
        ForeignKey("jobs.nrc_job_no"),
        nullable=False,
    )

    job_demand: Mapped[JobDemand] = mapped_column(
        String(20),
        default=JobDemand.NORMAL,
        nullable=False,
    )

    purchase_order_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("purchase_orders.id"),
        nullable=True,
    )

    # Reference quantity of finished goods expected from this run
    finished_goods_qty: Mapped[Quantity | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    steps: Mapped[list["JobStep"]] = relationship(
        back_populates="planning",
        order_by="JobStep.step_no",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<JobPlanning {self.nrc_job_no} {self.id}>"

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "job_planning_id": str(self.id),
            "nrc_job_no": self.nrc_job_no,
            "job_demand": JobDemand(self.job_demand).value,
            "purchase_order_id": str(self.purchase_order_id) if self.purchase_order_id else None,
            "finished_goods_qty": self.finished_goods_qty,
            "created_at": self.created_at,
        }


class JobStep(Base):
    """
    One step of a planning.

    Contract:
        ``machine_details`` holds the candidate machines (id, code, type,
        unit) captured when the planning was created; the live claim state
        is in ``claims``.
    """

    __tablename__ = "job_steps"

    __table_args__ = (
        UniqueConstraint("job_planning_id", "step_no", name="uq_job_step_planning_step_no"),
        Index("idx_job_step_job", "nrc_job_no", "step_no"),
    )

    job_planning_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("job_plannings.id", ondelete="CASCADE"),
        nullable=False,
    )

    nrc_job_no: Mapped[JobNumber] = mapped_column(nullable=False)

    step_no: Mapped[int] = mapped_column(nullable=False)

    step_name: Mapped[StepName] = mapped_column(String(50), nullable=False)

    status: Mapped[StepStatus] = mapped_column(
        String(20),
        default=StepStatus.PLANNED,
        nullable=False,
    )

    start_date: Mapped[datetime | None] = mapped_column(nullable=True)

    end_date: Mapped[datetime | None] = mapped_column(nullable=True)

    started_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    completed_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    machine_details: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON,
        default=list,
        nullable=False,
    )

    planning: Mapped[JobPlanning] = relationship(back_populates="steps")

    claims: Mapped[list["MachineClaim"]] = relationship(
        back_populates="step",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    detail: Mapped["StepDetailRecord | None"] = relationship(
        back_populates="step",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<JobStep {self.nrc_job_no}#{self.step_no} {self.step_name}: {self.status}>"

    @property
    def step_type(self) -> StepName:
        return StepName.parse(self.step_name)

    @property
    def current_status(self) -> StepStatus:
        return StepStatus(self.status)

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "step_id": str(self.id),
            "step_no": self.step_no,
            "step_name": self.step_type.value,
            "status": self.current_status.value,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "started_by": self.started_by,
            "completed_by": self.completed_by,
            "machine_details": list(self.machine_details or []),
        }
