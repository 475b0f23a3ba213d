"""
DispatchService -- quantity reconciliation for the DispatchProcess step.

Responsibility:
    Applies one DispatchRequest to a planning: gathers the aggregates
    (T dispatched so far, QC quality-passed, P purchase order target,
    F finished goods available), runs the pure ``reconcile_dispatch``
    engine, and writes the result: dispatch history, running total, ledger
    draws, banked excess and leftovers, and the dispatch detail status.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by WorkflowOrchestrator inside the per-job lock.

Invariants enforced:
    - total_dispatched_qty only grows and equals the sum of history rows.
    - One history row per call with a positive actual quantity.
    - Ledger draws use only entries that existed before the call; the
      excess entry, then the leftover entry, are appended after drawing.
    - The dispatch detail is ``accept`` iff the new total reaches P.
    - The job row is locked (FOR UPDATE) before any aggregate is read.
    - The ledger is verified after every reconciliation.
    - Flush-only.

Failure modes:
    - PurchaseOrderQuantityMissingError when P cannot be resolved or is <= 0.
    - LedgerInconsistencyError (fatal) from the post-write verification.
    - Insufficient finished goods is soft: logged, and reported as
      ``shortfall`` on the outcome.
"""

from sqlalchemy import func, select

from production_engines.reconciliation import reconcile_dispatch
from production_kernel.domain.clock import Clock
from production_kernel.domain.dispatch import DispatchRequest
from production_kernel.domain.dtos import DispatchOutcome
from production_kernel.domain.step_types import DetailStatus, LedgerEntrySource, StepName
from production_kernel.exceptions import PurchaseOrderQuantityMissingError
from production_kernel.logging_config import get_logger
from production_kernel.models.job import PurchaseOrder
from production_kernel.models.planning import JobPlanning, JobStep
from production_kernel.models.step_detail import (
    DispatchHistoryEntry,
    DispatchProcessRecord,
    StepDetailRecord,
)
from production_kernel.services.base import BaseService
from production_kernel.services.finished_goods_service import FinishedGoodsService
from production_kernel.services.step_detail_service import StepDetailService

logger = get_logger("services.dispatch")


def excess_remarks(requested: int, po_quantity: int, actual: int, excess: int) -> str:
    return (
        f"Excess quantity from dispatch. User tried to dispatch {requested}, "
        f"but PO quantity is {po_quantity}. {actual} dispatched, "
        f"{excess} added to finish quantity."
    )


class DispatchService(BaseService[DispatchProcessRecord]):
    """Dispatch reconciliation against the purchase order and the ledger."""

    def __init__(
        self,
        session,
        clock: Clock | None = None,
        finished_goods: FinishedGoodsService | None = None,
        details: StepDetailService | None = None,
    ):
        super().__init__(session, clock)
        self._finished_goods = finished_goods or FinishedGoodsService(session, self._clock)
        self._details = details or StepDetailService(session, self._clock)

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def purchase_order_quantity(self, planning: JobPlanning) -> tuple[int, PurchaseOrder | None]:
        """
        P and the purchase order it came from.

        The planning's linked purchase order wins; otherwise P is the sum
        over every purchase order of the job.

        Raises:
            PurchaseOrderQuantityMissingError: P resolves to nothing or <= 0.
        """
        linked = (
            self.session.get(PurchaseOrder, planning.purchase_order_id)
            if planning.purchase_order_id
            else None
        )
        if linked is not None and linked.total_po_quantity:
            quantity = linked.total_po_quantity
        else:
            quantity = self.session.execute(
                select(func.coalesce(func.sum(PurchaseOrder.total_po_quantity), 0)).where(
                    PurchaseOrder.nrc_job_no == planning.nrc_job_no
                )
            ).scalar_one()
        quantity = int(quantity or 0)
        if quantity <= 0:
            raise PurchaseOrderQuantityMissingError(planning.nrc_job_no)
        return quantity, linked

    def quality_quantity(self, planning: JobPlanning) -> int:
        """QC: pass quantity recorded on the planning's QualityDept details."""
        total = self.session.execute(
            select(func.coalesce(func.sum(StepDetailRecord.quantity), 0))
            .join(JobStep, JobStep.id == StepDetailRecord.job_step_id)
            .where(
                JobStep.job_planning_id == planning.id,
                StepDetailRecord.step_name == StepName.QUALITY_DEPT.value,
            )
        ).scalar_one()
        return int(total)

    def _next_sequence(self, record: DispatchProcessRecord) -> int:
        current = self.session.execute(
            select(func.max(DispatchHistoryEntry.sequence)).where(
                DispatchHistoryEntry.record_id == record.id
            )
        ).scalar_one()
        return (current or 0) + 1

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile(
        self,
        planning: JobPlanning,
        step: JobStep,
        request: DispatchRequest,
        actor_id: str,
    ) -> DispatchOutcome:
        """
        Apply one dispatch request.

        Preconditions:
            ``step`` is the planning's DispatchProcess step and the caller
            holds the per-job lock.

        Returns:
            DispatchOutcome with the recorded, banked and drawn quantities.
        """
        self._lock_job(planning.nrc_job_no)
        nrc_job_no = planning.nrc_job_no

        po_quantity, linked_po = self.purchase_order_quantity(planning)
        record = self._details.get_or_create(step, actor_id)
        previous_total = record.total_dispatched_qty or 0
        qc_quantity = self.quality_quantity(planning)
        lots = self._finished_goods.available_lots(nrc_job_no)

        computation = reconcile_dispatch(
            requested=request.dispatch_quantity,
            total_dispatched=previous_total,
            qc_quantity=qc_quantity,
            po_quantity=po_quantity,
            available_finished_goods=sum(lot.remaining for lot in lots),
        )

        now = self._clock.now()
        dispatch_no = request.resolved_dispatch_no(now)
        po_id = linked_po.id if linked_po is not None else planning.purchase_order_id

        consumed = 0
        shortfall = 0
        if computation.finished_goods_needed > 0:
            plan = self._finished_goods.consume(
                nrc_job_no,
                computation.finished_goods_needed,
                lots=lots,
                purchase_order_id=po_id,
                dispatch_no=dispatch_no,
            )
            consumed = plan.drawn_total
            shortfall = plan.shortfall

        excess_entry = None
        if computation.excess > 0:
            excess_entry = self._finished_goods.add_entry(
                nrc_job_no,
                computation.excess,
                source=LedgerEntrySource.EXCESS,
                purchase_order_id=po_id,
                total_po_quantity=po_quantity,
                total_dispatched_quantity=computation.new_total,
                remarks=excess_remarks(
                    computation.requested, po_quantity, computation.actual, computation.excess
                ),
            )

        leftover_entry = None
        if request.leftover_finished_goods > 0:
            leftover_entry = self._finished_goods.add_entry(
                nrc_job_no,
                request.leftover_finished_goods,
                source=LedgerEntrySource.LEFTOVER,
                purchase_order_id=po_id,
                total_po_quantity=po_quantity,
                total_dispatched_quantity=computation.new_total,
                remarks=f"Leftover finished goods reported with dispatch {dispatch_no}",
            )

        if computation.actual > 0:
            self.session.add(
                DispatchHistoryEntry(
                    record_id=record.id,
                    sequence=self._next_sequence(record),
                    dispatch_date=request.dispatch_date or now,
                    dispatched_qty=computation.actual,
                    dispatch_no=dispatch_no,
                    operator_id=request.operator_name or actor_id,
                    remarks=request.remarks,
                )
            )

        detail_status = (
            DetailStatus.ACCEPT if computation.reaches_target else DetailStatus.IN_PROGRESS
        )
        record.total_dispatched_qty = computation.new_total
        record.quantity = computation.new_total
        record.status = detail_status.value
        record.operator_id = actor_id
        if request.remarks is not None:
            record.remarks = request.remarks
        self.session.flush()
        self.session.expire(record, ["dispatch_history"])

        self._finished_goods.verify_ledger(nrc_job_no)

        logger.info(
            "dispatch_reconciled",
            extra={
                "nrc_job_no": nrc_job_no,
                "dispatch_no": dispatch_no,
                "requested": computation.requested,
                "actual": computation.actual,
                "excess": computation.excess,
                "previous_total": previous_total,
                "new_total": computation.new_total,
                "qc_quantity": qc_quantity,
                "po_quantity": po_quantity,
                "finished_goods_consumed": consumed,
                "shortfall": shortfall,
                "detail_status": detail_status.value,
            },
        )
        return DispatchOutcome(
            requested_quantity=computation.requested,
            actual_quantity=computation.actual,
            excess_quantity=computation.excess,
            previous_total=previous_total,
            new_total=computation.new_total,
            finished_goods_consumed=consumed,
            shortfall=shortfall,
            detail_status=detail_status,
            excess_entry_id=excess_entry.id if excess_entry else None,
            leftover_entry_id=leftover_entry.id if leftover_entry else None,
        )
