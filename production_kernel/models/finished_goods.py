"""
Module: production_kernel.models.finished_goods
Responsibility: ORM persistence for the finished-goods ledger -- banked
    over-production and over-dispatch stock -- and its append-only draw log.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - original_quantity == over_dispatched_quantity + consumed_quantity,
      with both parts >= 0 (ck_fg_entry_balance, ck_fg_entry_non_negative).
    - An entry with no remaining quantity is ``consumed``; entries are never
      re-opened.
    - (nrc_job_no, entry_no) is unique; entry_no orders entries oldest-first
      within a job.
    - FinishedGoodsConsumption rows are only ever inserted.

Failure modes:
    - IntegrityError if a draw would drive remaining quantity negative.
      FinishedGoodsService never issues such a draw; verify_ledger reports
      any row that breaks the identities as LedgerInconsistencyError.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from production_kernel.db.base import Base, UUIDString
from production_kernel.db.types import JobNumber, Quantity
from production_kernel.domain.step_types import LedgerEntrySource, LedgerEntryStatus


class FinishedGoodsEntry(Base):
    """
    A lot of finished goods usable by future dispatches of the same job.

    ``over_dispatched_quantity`` is the quantity still available.
    """

    __tablename__ = "finished_goods_entries"

    __table_args__ = (
        UniqueConstraint("nrc_job_no", "entry_no", name="uq_fg_entry_job_entry_no"),
        CheckConstraint(
            "original_quantity = over_dispatched_quantity + consumed_quantity",
            name="ck_fg_entry_balance",
        ),
        CheckConstraint(
            "over_dispatched_quantity >= 0 AND consumed_quantity >= 0",
            name="ck_fg_entry_non_negative",
        ),
        Index("idx_fg_entry_job_status", "nrc_job_no", "status"),
    )

    nrc_job_no: Mapped[JobNumber] = mapped_column(nullable=False)

    entry_no: Mapped[int] = mapped_column(nullable=False)

    purchase_order_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("purchase_orders.id"),
        nullable=True,
    )

    original_quantity: Mapped[Quantity] = mapped_column(nullable=False)

    over_dispatched_quantity: Mapped[Quantity] = mapped_column(nullable=False)

    consumed_quantity: Mapped[Quantity] = mapped_column(default=0, nullable=False)

    status: Mapped[LedgerEntryStatus] = mapped_column(
        String(20),
        default=LedgerEntryStatus.AVAILABLE,
        nullable=False,
    )

    source: Mapped[LedgerEntrySource] = mapped_column(String(20), nullable=False)

    # PO context at the time the stock was banked
    total_po_quantity: Mapped[Quantity | None] = mapped_column(nullable=True)

    total_dispatched_quantity: Mapped[Quantity | None] = mapped_column(nullable=True)

    consumed_by_purchase_order_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    remarks: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    consumptions: Mapped[list["FinishedGoodsConsumption"]] = relationship(
        back_populates="entry",
        order_by="FinishedGoodsConsumption.consumed_at",
    )

    def __repr__(self) -> str:
        return (
            f"<FinishedGoodsEntry {self.nrc_job_no}#{self.entry_no} "
            f"{self.over_dispatched_quantity}/{self.original_quantity}: {self.status}>"
        )

    @property
    def is_available(self) -> bool:
        return self.status == LedgerEntryStatus.AVAILABLE

    def draw(self, quantity: int, purchase_order_id: UUID | None = None) -> None:
        """Reduce the remaining quantity, closing the entry when it hits zero.

        Raises: ValueError if quantity is not positive or exceeds what remains.
        """
        if quantity <= 0:
            raise ValueError(f"Draw quantity must be positive, got {quantity}")
        if quantity > self.over_dispatched_quantity:
            raise ValueError(
                f"Draw of {quantity} exceeds remaining {self.over_dispatched_quantity} "
                f"on entry {self.id}"
            )
        self.over_dispatched_quantity -= quantity
        self.consumed_quantity += quantity
        if purchase_order_id is not None:
            self.consumed_by_purchase_order_id = purchase_order_id
        if self.over_dispatched_quantity == 0:
            self.status = LedgerEntryStatus.CONSUMED


class FinishedGoodsConsumption(Base):
    """One draw against a ledger entry."""

    __tablename__ = "finished_goods_consumptions"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_fg_consumption_positive"),
        Index("idx_fg_consumption_job", "nrc_job_no"),
    )

    entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("finished_goods_entries.id"),
        nullable=False,
    )

    nrc_job_no: Mapped[JobNumber] = mapped_column(nullable=False)

    quantity: Mapped[Quantity] = mapped_column(nullable=False)

    dispatch_no: Mapped[str | None] = mapped_column(String(100), nullable=True)

    consumed_at: Mapped[datetime] = mapped_column(nullable=False)

    entry: Mapped[FinishedGoodsEntry] = relationship(back_populates="consumptions")
