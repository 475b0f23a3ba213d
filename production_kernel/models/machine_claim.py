"""
Module: production_kernel.models.machine_claim
Responsibility: ORM persistence for machine claims on job steps.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

A claim row links a step to one eligible machine.  While
``started_by_machine_id`` is NULL the machine merely sees the step; once set,
that machine owns the step exclusively.

Invariants enforced:
    - (job_step_id, machine_id) is unique (uq_machine_claim_step_machine).
    - started_by_machine_id is NULL or equals machine_id
      (ck_machine_claim_started_by_self).
    - At most one owning claim per step (uq_machine_claim_one_owner): a
      partial unique index over rows whose started_by_machine_id is set.

Failure modes:
    - IntegrityError when a second machine's owning claim is flushed for the
      same step; MachineAllocationService maps this to
      MachineAlreadyClaimedError.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Index, String, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from production_kernel.db.base import Base, UUIDString
from production_kernel.db.types import JobNumber
from production_kernel.domain.step_types import ClaimStatus

if TYPE_CHECKING:
    from production_kernel.models.planning import JobStep


class MachineClaim(Base):
    """
    One machine's visibility of, or ownership over, a step.

    Guarantees:
        - An owning claim is never transferred; release resets it to
          ``available`` with no owner before another machine may claim.
    """

    __tablename__ = "machine_claims"

    __table_args__ = (
        UniqueConstraint("job_step_id", "machine_id", name="uq_machine_claim_step_machine"),
        CheckConstraint(
            "started_by_machine_id IS NULL OR started_by_machine_id = machine_id",
            name="ck_machine_claim_started_by_self",
        ),
        Index(
            "uq_machine_claim_one_owner",
            "job_step_id",
            unique=True,
            sqlite_where=text("started_by_machine_id IS NOT NULL"),
            postgresql_where=text("started_by_machine_id IS NOT NULL"),
        ),
        Index("idx_machine_claim_status", "status"),
        Index("idx_machine_claim_machine", "machine_id"),
    )

    job_step_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("job_steps.id", ondelete="CASCADE"),
        nullable=False,
    )

    machine_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("machines.id"),
        nullable=False,
    )

    nrc_job_no: Mapped[JobNumber] = mapped_column(nullable=False)

    step_no: Mapped[int] = mapped_column(nullable=False)

    status: Mapped[ClaimStatus] = mapped_column(
        String(20),
        default=ClaimStatus.AVAILABLE,
        nullable=False,
    )

    started_by_machine_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    operator_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    started_at: Mapped[datetime | None] = mapped_column(nullable=True)

    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    hold_remark: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    form_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    step: Mapped["JobStep"] = relationship(back_populates="claims")

    def __repr__(self) -> str:
        return f"<MachineClaim step={self.job_step_id} machine={self.machine_id}: {self.status}>"

    @property
    def current_status(self) -> ClaimStatus:
        return ClaimStatus(self.status)

    @property
    def is_owner(self) -> bool:
        return self.started_by_machine_id is not None

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "claim_id": str(self.id),
            "machine_id": str(self.machine_id),
            "started_by_machine_id": (
                str(self.started_by_machine_id) if self.started_by_machine_id else None
            ),
            "status": self.current_status.value,
            "operator_id": self.operator_id,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "hold_remark": self.hold_remark,
            "form_data": self.form_data,
        }
