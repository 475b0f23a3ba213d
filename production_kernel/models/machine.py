"""
Module: production_kernel.models.machine
Responsibility: ORM persistence for the machine registry.
Architecture position: Kernel > Models.  May import from db/ only.

The core treats machines as a read-only catalog: services turn rows into a
``MachineCatalog`` snapshot once per request.
"""

from sqlalchemy import Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from production_kernel.db.base import TimestampedBase


class Machine(TimestampedBase):
    """
    A physical machine on the shop floor.

    ``machine_type`` is the canonical type label steps are matched against
    (e.g. "Printing", "Auto Pund", "Manual Pu").
    """

    __tablename__ = "machines"

    __table_args__ = (
        UniqueConstraint("machine_code", name="uq_machine_code"),
        Index("idx_machine_type", "machine_type"),
    )

    machine_code: Mapped[str] = mapped_column(String(50), nullable=False)

    machine_type: Mapped[str] = mapped_column(String(100), nullable=False)

    # Plant unit (NR, MK, NR1, DG)
    unit: Mapped[str | None] = mapped_column(String(20), nullable=True)

    description: Mapped[str | None] = mapped_column(String(200), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Machine {self.machine_code} ({self.machine_type})>"
