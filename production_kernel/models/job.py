"""
Module: production_kernel.models.job
Responsibility: ORM persistence for jobs and their purchase orders.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Both tables are owned by the job-metadata layer.  The workflow core reads
them, locks the job row to serialize per-job writes, and flips the job to
``inactive`` when it is archived.  Nothing else here is written by the core.
"""

from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from production_kernel.db.base import TimestampedBase, UUIDString
from production_kernel.db.types import JobNumber, Quantity
from production_kernel.domain.step_types import JobDemand, JobStatus


class Job(TimestampedBase):
    """
    A customer job, identified by its human-assigned NRC job number.

    Guarantees:
        - nrc_job_no is unique (uq_job_nrc_job_no).
    """

    __tablename__ = "jobs"

    __table_args__ = (
        UniqueConstraint("nrc_job_no", name="uq_job_nrc_job_no"),
        Index("idx_job_status", "status"),
    )

    nrc_job_no: Mapped[JobNumber] = mapped_column(nullable=False)

    job_demand: Mapped[JobDemand] = mapped_column(
        String(20),
        default=JobDemand.NORMAL,
        nullable=False,
    )

    status: Mapped[JobStatus] = mapped_column(
        String(20),
        default=JobStatus.ACTIVE,
        nullable=False,
    )

    customer_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    style_item_sku: Mapped[str | None] = mapped_column(String(200), nullable=True)

    purchase_orders: Mapped[list["PurchaseOrder"]] = relationship(
        back_populates="job",
        order_by="PurchaseOrder.po_number",
    )

    def __repr__(self) -> str:
        return f"<Job {self.nrc_job_no}: {self.status}>"

    @property
    def is_active(self) -> bool:
        return self.status == JobStatus.ACTIVE

    def deactivate(self) -> None:
        self.status = JobStatus.INACTIVE

    def to_snapshot(self) -> dict:
        return {
            "id": str(self.id),
            "nrc_job_no": self.nrc_job_no,
            "job_demand": JobDemand(self.job_demand).value,
            "status": JobStatus(self.status).value,
            "customer_name": self.customer_name,
            "style_item_sku": self.style_item_sku,
        }


class PurchaseOrder(TimestampedBase):
    """Customer purchase order; supplies the target dispatch quantity."""

    __tablename__ = "purchase_orders"

    __table_args__ = (
        Index("idx_po_job", "nrc_job_no"),
    )

    po_number: Mapped[str] = mapped_column(String(100), nullable=False)

    nrc_job_no: Mapped[JobNumber] = mapped_column(
        ForeignKey("jobs.nrc_job_no"),
        nullable=False,
    )

    total_po_quantity: Mapped[Quantity | None] = mapped_column(nullable=True)

    customer: Mapped[str | None] = mapped_column(String(200), nullable=True)

    job: Mapped[Job] = relationship(back_populates="purchase_orders")

    def __repr__(self) -> str:
        return f"<PurchaseOrder {self.po_number} qty={self.total_po_quantity}>"

    def to_snapshot(self) -> dict:
        return {
            "id": str(self.id),
            "po_number": self.po_number,
            "nrc_job_no": self.nrc_job_no,
            "total_po_quantity": self.total_po_quantity,
            "customer": self.customer,
        }
