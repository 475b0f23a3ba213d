"""
Module: production_kernel.models.completed_job
Responsibility: ORM persistence for archived job snapshots.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - job_planning_id is unique (uq_completed_job_planning): a planning is
      archived at most once.
    - Rows are written once by JobCompletionService and never updated.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from production_kernel.db.base import Base, UUIDString
from production_kernel.db.types import JobNumber


class CompletedJob(Base):
    """Immutable snapshot of a planning, its steps and step details."""

    __tablename__ = "completed_jobs"

    __table_args__ = (
        UniqueConstraint("job_planning_id", name="uq_completed_job_planning"),
        Index("idx_completed_job_job", "nrc_job_no"),
    )

    nrc_job_no: Mapped[JobNumber] = mapped_column(nullable=False)

    job_planning_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    job_demand: Mapped[str] = mapped_column(String(20), nullable=False)

    job_details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    purchase_order_details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    all_steps: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)

    # Detail records keyed by step type, e.g. {"corrugation": [...]}
    all_step_details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    completed_by: Mapped[str] = mapped_column(String(100), nullable=False)

    # Whole days from earliest step start to latest step end, rounded up
    total_duration_days: Mapped[int | None] = mapped_column(nullable=True)

    remarks: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    final_status: Mapped[str] = mapped_column(String(20), nullable=False)

    completed_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<CompletedJob {self.nrc_job_no} planning={self.job_planning_id}>"
