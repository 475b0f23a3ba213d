"""
production_engines.reconciliation -- Dispatch quantity reconciliation.

Responsibility:
    Pure arithmetic for one dispatch: how much of the requested quantity
    may actually be recorded against the purchase order, how much is
    banked as excess, how much must be drawn from the finished-goods ledger,
    and how that draw is spread oldest-first across available lots.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Persistence lives in
    DispatchService and FinishedGoodsService.

Algorithm (Q requested, T dispatched so far, QC quality-passed, P purchase
order target, F available finished goods):
    remaining_po     = max(0, P - T)
    max_dispatchable = remaining_po + F
    max_from_qc      = QC + F
    actual           = min(Q, max_dispatchable, max_from_qc)
    excess           = Q - actual                   (banked, not dispatched)
    new_total        = T + actual
    fg_needed        = max(0, new_total - QC) - max(0, T - QC)
    reaches_target   = new_total >= P

Invariants enforced:
    - 0 <= actual <= Q, and new_total >= T.
    - actual + excess == Q.
    - A FIFO plan never draws more from a lot than it has remaining, and
      drawn_total + shortfall == amount requested.

Failure modes:
    - ValueError for negative inputs or a non-positive purchase order
      quantity.
    - Insufficient finished goods is not an error: the plan carries a
      positive ``shortfall``.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from uuid import UUID

from production_engines.tracer import traced_engine


@dataclass(frozen=True, slots=True)
class DispatchComputation:
    """Every intermediate and final figure of one reconciliation."""

    requested: int
    previous_total: int
    qc_quantity: int
    po_quantity: int
    available_finished_goods: int
    remaining_po: int
    max_dispatchable: int
    max_from_qc: int
    actual: int
    excess: int
    new_total: int
    finished_goods_needed: int

    @property
    def reaches_target(self) -> bool:
        return self.new_total >= self.po_quantity


def _require_non_negative(**values: int) -> None:
    for name, value in values.items():
        if value < 0:
            raise ValueError(f"{name} must not be negative, got {value}")


@traced_engine(
    "dispatch_reconciliation", "1.0",
    fingerprint_fields=(
        "requested", "total_dispatched", "qc_quantity", "po_quantity",
        "available_finished_goods",
    ),
)
def reconcile_dispatch(
    *,
    requested: int,
    total_dispatched: int,
    qc_quantity: int,
    po_quantity: int,
    available_finished_goods: int,
) -> DispatchComputation:
    """Compute the recorded dispatch, banked excess and ledger draw."""
    _require_non_negative(
        requested=requested,
        total_dispatched=total_dispatched,
        qc_quantity=qc_quantity,
        available_finished_goods=available_finished_goods,
    )
    if po_quantity <= 0:
        raise ValueError(f"po_quantity must be positive, got {po_quantity}")

    remaining_po = max(0, po_quantity - total_dispatched)
    max_dispatchable = remaining_po + available_finished_goods
    max_from_qc = qc_quantity + available_finished_goods
    actual = min(requested, max_dispatchable, max_from_qc)
    new_total = total_dispatched + actual
    finished_goods_needed = (
        max(0, new_total - qc_quantity) - max(0, total_dispatched - qc_quantity)
    )

    return DispatchComputation(
        requested=requested,
        previous_total=total_dispatched,
        qc_quantity=qc_quantity,
        po_quantity=po_quantity,
        available_finished_goods=available_finished_goods,
        remaining_po=remaining_po,
        max_dispatchable=max_dispatchable,
        max_from_qc=max_from_qc,
        actual=actual,
        excess=requested - actual,
        new_total=new_total,
        finished_goods_needed=finished_goods_needed,
    )


# ---------------------------------------------------------------------------
# FIFO consumption planning
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class LedgerLot:
    """An available finished-goods entry as seen by the planner."""

    entry_id: UUID
    entry_no: int
    remaining: int


@dataclass(frozen=True, slots=True)
class LedgerDraw:
    entry_id: UUID
    quantity: int
    remaining_after: int

    @property
    def closes_entry(self) -> bool:
        return self.remaining_after == 0


@dataclass(frozen=True, slots=True)
class ConsumptionPlan:
    requested: int
    draws: tuple[LedgerDraw, ...]
    shortfall: int

    @property
    def drawn_total(self) -> int:
        return sum(d.quantity for d in self.draws)

    @property
    def is_short(self) -> bool:
        return self.shortfall > 0


@traced_engine("finished_goods_fifo", "1.0", fingerprint_fields=("amount",))
def plan_fifo_consumption(*, lots: Sequence[LedgerLot], amount: int) -> ConsumptionPlan:
    """
    Spread ``amount`` across lots oldest-first (by entry_no).

    Lots with nothing remaining are skipped.  If the lots cannot cover the
    amount, everything available is drawn and the rest is the shortfall.
    """
    _require_non_negative(amount=amount)

    draws: list[LedgerDraw] = []
    outstanding = amount
    for lot in sorted(lots, key=lambda l: l.entry_no):
        if outstanding == 0:
            break
        if lot.remaining <= 0:
            continue
        take = min(lot.remaining, outstanding)
        draws.append(LedgerDraw(entry_id=lot.entry_id, quantity=take, remaining_after=lot.remaining - take))
        outstanding -= take

    return ConsumptionPlan(requested=amount, draws=tuple(draws), shortfall=outstanding)
