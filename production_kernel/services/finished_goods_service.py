"""
FinishedGoodsService -- the finished-goods ledger.

Responsibility:
    Banks stock as ledger entries (dispatch excess, reported leftovers,
    manual over-production), draws it down oldest-first for dispatches that
    exceed the quality-passed quantity, and verifies the ledger identities.

Architecture position:
    Kernel > Services -- imperative shell.
    The FIFO plan is computed by ``production_engines.reconciliation``;
    this service applies it to rows and records each draw.

Invariants enforced:
    - Per entry: original == remaining + consumed, both >= 0.
    - Per entry: consumed == sum of its FinishedGoodsConsumption rows.
    - entry_no is allocated per job, strictly increasing; FIFO order is
      entry_no order.
    - A draw only touches entries that were available when it was planned.
    - Flush-only.

Failure modes:
    - Insufficient stock is soft: the shortfall is logged as a warning
      (``finished_goods_shortfall``) and returned, never raised.
    - LedgerInconsistencyError from ``verify_ledger``.  Fatal; nothing is
      corrected.
    - ValueError on non-positive banking quantities.
"""

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import func, select

from production_engines.reconciliation import ConsumptionPlan, LedgerLot, plan_fifo_consumption
from production_kernel.domain.dtos import FinishedGoodsSummary
from production_kernel.domain.step_types import LedgerEntrySource, LedgerEntryStatus
from production_kernel.exceptions import LedgerInconsistencyError
from production_kernel.logging_config import get_logger
from production_kernel.models.finished_goods import FinishedGoodsConsumption, FinishedGoodsEntry
from production_kernel.services.base import BaseService

logger = get_logger("services.finished_goods")


class FinishedGoodsService(BaseService[FinishedGoodsEntry]):
    """Finished-goods ledger reads, banking, draws and verification."""

    def _entries(self, nrc_job_no: str, available_only: bool = False) -> list[FinishedGoodsEntry]:
        stmt = select(FinishedGoodsEntry).where(FinishedGoodsEntry.nrc_job_no == nrc_job_no)
        if available_only:
            stmt = stmt.where(FinishedGoodsEntry.status == LedgerEntryStatus.AVAILABLE.value)
        return list(
            self.session.execute(
                stmt.order_by(FinishedGoodsEntry.entry_no)
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def available_quantity(self, nrc_job_no: str) -> int:
        """F: remaining quantity over available entries of the job."""
        total = self.session.execute(
            select(func.coalesce(func.sum(FinishedGoodsEntry.over_dispatched_quantity), 0))
            .where(
                FinishedGoodsEntry.nrc_job_no == nrc_job_no,
                FinishedGoodsEntry.status == LedgerEntryStatus.AVAILABLE.value,
            )
        ).scalar_one()
        return int(total)

    def available_lots(self, nrc_job_no: str) -> tuple[LedgerLot, ...]:
        """Snapshot of available entries, oldest first."""
        return tuple(
            LedgerLot(entry_id=e.id, entry_no=e.entry_no, remaining=e.over_dispatched_quantity)
            for e in self._entries(nrc_job_no, available_only=True)
        )

    def summary(self, nrc_job_no: str) -> FinishedGoodsSummary:
        entries = self._entries(nrc_job_no)
        available = [e for e in entries if e.is_available]
        return FinishedGoodsSummary(
            nrc_job_no=nrc_job_no,
            total_available=sum(e.over_dispatched_quantity for e in available),
            total_consumed=sum(e.consumed_quantity for e in entries),
            entry_count=len(entries),
            available_entry_ids=tuple(e.id for e in available),
        )

    # ------------------------------------------------------------------
    # Banking
    # ------------------------------------------------------------------

    def _next_entry_no(self, nrc_job_no: str) -> int:
        current = self.session.execute(
            select(func.max(FinishedGoodsEntry.entry_no)).where(
                FinishedGoodsEntry.nrc_job_no == nrc_job_no
            )
        ).scalar_one()
        return (current or 0) + 1

    def add_entry(
        self,
        nrc_job_no: str,
        quantity: int,
        *,
        source: LedgerEntrySource,
        purchase_order_id: UUID | None = None,
        total_po_quantity: int | None = None,
        total_dispatched_quantity: int | None = None,
        remarks: str | None = None,
    ) -> FinishedGoodsEntry:
        """Append a new ``available`` entry holding ``quantity``."""
        if quantity <= 0:
            raise ValueError(f"Finished-goods quantity must be positive, got {quantity}")

        entry = FinishedGoodsEntry(
            nrc_job_no=nrc_job_no,
            entry_no=self._next_entry_no(nrc_job_no),
            purchase_order_id=purchase_order_id,
            original_quantity=quantity,
            over_dispatched_quantity=quantity,
            consumed_quantity=0,
            status=LedgerEntryStatus.AVAILABLE.value,
            source=LedgerEntrySource(source).value,
            total_po_quantity=total_po_quantity,
            total_dispatched_quantity=total_dispatched_quantity,
            remarks=remarks,
            created_at=self._clock.now(),
        )
        self.session.add(entry)
        self.session.flush()

        logger.info(
            "finished_goods_banked",
            extra={
                "nrc_job_no": nrc_job_no,
                "entry_no": entry.entry_no,
                "quantity": quantity,
                "source": entry.source,
            },
        )
        return entry

    def add_manual_entry(
        self,
        nrc_job_no: str,
        quantity: int,
        *,
        actor_id: str,
        remarks: str | None = None,
        purchase_order_id: UUID | None = None,
    ) -> FinishedGoodsEntry:
        """Bank over-production by hand.  Callers gate this to privileged roles."""
        entry = self.add_entry(
            nrc_job_no,
            quantity,
            source=LedgerEntrySource.MANUAL,
            purchase_order_id=purchase_order_id,
            remarks=remarks or f"Manual entry by {actor_id}",
        )
        logger.info(
            "finished_goods_manual_entry",
            extra={"nrc_job_no": nrc_job_no, "quantity": quantity, "actor_id": actor_id},
        )
        return entry

    # ------------------------------------------------------------------
    # Drawing
    # ------------------------------------------------------------------

    def consume(
        self,
        nrc_job_no: str,
        amount: int,
        *,
        lots: Sequence[LedgerLot] | None = None,
        purchase_order_id: UUID | None = None,
        dispatch_no: str | None = None,
    ) -> ConsumptionPlan:
        """
        Draw ``amount`` oldest-first and record each draw.

        Args:
            lots: Entries eligible for this draw.  Defaults to the job's
                currently available entries; dispatch passes the snapshot
                taken before it banked anything new.

        Returns:
            The executed ConsumptionPlan; ``shortfall`` > 0 when the ledger
            could not cover ``amount``.
        """
        if lots is None:
            lots = self.available_lots(nrc_job_no)
        plan = plan_fifo_consumption(lots=lots, amount=amount)

        now = self._clock.now()
        for draw in plan.draws:
            entry = self.session.get(FinishedGoodsEntry, draw.entry_id)
            entry.draw(draw.quantity, purchase_order_id)
            self.session.add(
                FinishedGoodsConsumption(
                    entry_id=entry.id,
                    nrc_job_no=nrc_job_no,
                    quantity=draw.quantity,
                    dispatch_no=dispatch_no,
                    consumed_at=now,
                )
            )
        self.session.flush()

        if plan.draws:
            logger.info(
                "finished_goods_consumed",
                extra={
                    "nrc_job_no": nrc_job_no,
                    "amount": plan.drawn_total,
                    "entries": len(plan.draws),
                    "dispatch_no": dispatch_no,
                },
            )
        if plan.is_short:
            logger.warning(
                "finished_goods_shortfall",
                extra={
                    "nrc_job_no": nrc_job_no,
                    "requested": amount,
                    "drawn": plan.drawn_total,
                    "shortfall": plan.shortfall,
                },
            )
        return plan

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify_ledger(self, nrc_job_no: str) -> None:
        """
        Check every ledger identity for the job.

        Raises:
            LedgerInconsistencyError: on the first broken identity.
        """
        self.session.flush()
        drawn_by_entry = dict(
            self.session.execute(
                select(
                    FinishedGoodsConsumption.entry_id,
                    func.sum(FinishedGoodsConsumption.quantity),
                )
                .where(FinishedGoodsConsumption.nrc_job_no == nrc_job_no)
                .group_by(FinishedGoodsConsumption.entry_id)
            ).all()
        )

        for entry in self._entries(nrc_job_no):
            entry_id = str(entry.id)
            if entry.over_dispatched_quantity < 0 or entry.consumed_quantity < 0:
                raise LedgerInconsistencyError(nrc_job_no, entry_id, "negative quantity")
            if entry.original_quantity != entry.over_dispatched_quantity + entry.consumed_quantity:
                raise LedgerInconsistencyError(
                    nrc_job_no,
                    entry_id,
                    f"original {entry.original_quantity} != remaining "
                    f"{entry.over_dispatched_quantity} + consumed {entry.consumed_quantity}",
                )
            drawn = int(drawn_by_entry.get(entry.id, 0) or 0)
            if entry.consumed_quantity != drawn:
                raise LedgerInconsistencyError(
                    nrc_job_no,
                    entry_id,
                    f"consumed {entry.consumed_quantity} != recorded draws {drawn}",
                )
            if entry.is_available == (entry.over_dispatched_quantity == 0):
                raise LedgerInconsistencyError(
                    nrc_job_no,
                    entry_id,
                    f"status {entry.status} with remaining {entry.over_dispatched_quantity}",
                )
