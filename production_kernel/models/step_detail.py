"""
Module: production_kernel.models.step_detail
Responsibility: ORM persistence for per-step detail records, including the
    dispatch record with its running total and append-only history.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Single-table inheritance: every step type stores its detail in
``step_detail_records``; DispatchProcessRecord (record_type='dispatch') adds
the dispatch counters.

Invariants enforced:
    - One detail record per step (uq_step_detail_step).
    - total_dispatched_qty never decreases and equals the sum of
      dispatched_qty over dispatch_history; history rows are only appended.
    - (record_id, sequence) is unique for history rows.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from production_kernel.db.base import Base, UUIDString
from production_kernel.db.types import JobNumber, Quantity
from production_kernel.domain.step_types import DetailStatus, StepName

if TYPE_CHECKING:
    from production_kernel.models.planning import JobStep


class StepDetailRecord(Base):
    """
    Domain fields recorded against one step.

    Contract:
        Created lazily on the first write that concerns the step and upserted
        thereafter.  ``status`` must reach ``accept`` for most downstream
        dependency checks to pass.
    """

    __tablename__ = "step_detail_records"

    __table_args__ = (
        UniqueConstraint("job_step_id", name="uq_step_detail_step"),
        Index("idx_step_detail_job", "nrc_job_no", "step_name"),
    )

    record_type: Mapped[str] = mapped_column(String(20), nullable=False)

    __mapper_args__ = {
        "polymorphic_on": "record_type",
        "polymorphic_identity": "generic",
    }

    job_step_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("job_steps.id", ondelete="CASCADE"),
        nullable=False,
    )

    nrc_job_no: Mapped[JobNumber] = mapped_column(nullable=False)

    step_name: Mapped[StepName] = mapped_column(String(50), nullable=False)

    status: Mapped[DetailStatus] = mapped_column(
        String(20),
        default=DetailStatus.IN_PROGRESS,
        nullable=False,
    )

    # Pass quantity (sheets issued, boards produced, QC-passed pieces...)
    quantity: Mapped[Quantity | None] = mapped_column(nullable=True)

    rejected_quantity: Mapped[Quantity | None] = mapped_column(nullable=True)

    # QC sign-off: who signed and when
    qc_check_sign_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    qc_check_at: Mapped[datetime | None] = mapped_column(nullable=True)

    operator_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    remarks: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    fields: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    step: Mapped["JobStep"] = relationship(back_populates="detail")

    def __repr__(self) -> str:
        return f"<StepDetailRecord {self.nrc_job_no} {self.step_name}: {self.status}>"

    @property
    def current_status(self) -> DetailStatus:
        return DetailStatus(self.status)

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "record_id": str(self.id),
            "step_id": str(self.job_step_id),
            "step_name": StepName.parse(self.step_name).value,
            "status": self.current_status.value,
            "quantity": self.quantity,
            "rejected_quantity": self.rejected_quantity,
            "qc_check_sign_by": self.qc_check_sign_by,
            "qc_check_at": self.qc_check_at,
            "operator_id": self.operator_id,
            "remarks": self.remarks,
            "fields": dict(self.fields or {}),
        }


class DispatchProcessRecord(StepDetailRecord):
    """Detail record for the DispatchProcess step."""

    __mapper_args__ = {"polymorphic_identity": "dispatch"}

    total_dispatched_qty: Mapped[Quantity | None] = mapped_column(
        default=0,
        nullable=True,
    )

    dispatch_history: Mapped[list["DispatchHistoryEntry"]] = relationship(
        back_populates="record",
        order_by="DispatchHistoryEntry.sequence",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def to_snapshot(self) -> dict[str, Any]:
        snapshot = super().to_snapshot()
        snapshot["total_dispatched_qty"] = self.total_dispatched_qty or 0
        snapshot["dispatch_history"] = [h.to_snapshot() for h in self.dispatch_history]
        return snapshot


class DispatchHistoryEntry(Base):
    """One dispatch action. Append-only."""

    __tablename__ = "dispatch_history_entries"

    __table_args__ = (
        UniqueConstraint("record_id", "sequence", name="uq_dispatch_history_sequence"),
    )

    record_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("step_detail_records.id", ondelete="CASCADE"),
        nullable=False,
    )

    sequence: Mapped[int] = mapped_column(nullable=False)

    dispatch_date: Mapped[datetime] = mapped_column(nullable=False)

    dispatched_qty: Mapped[Quantity] = mapped_column(nullable=False)

    dispatch_no: Mapped[str] = mapped_column(String(100), nullable=False)

    operator_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    remarks: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    record: Mapped[DispatchProcessRecord] = relationship(back_populates="dispatch_history")

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "sequence": self.sequence,
            "dispatch_date": self.dispatch_date,
            "dispatched_qty": self.dispatched_qty,
            "dispatch_no": self.dispatch_no,
            "operator_id": self.operator_id,
            "remarks": self.remarks,
        }
