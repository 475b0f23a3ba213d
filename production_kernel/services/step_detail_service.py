"""
StepDetailService -- lazy upsert of per-step detail records.

Responsibility:
    Creates a step's detail record on the first write that concerns it and
    updates it thereafter: pass/rejected quantities, acceptance, remarks,
    free-form domain fields and the QC sign-off.  The DispatchProcess step
    gets a DispatchProcessRecord carrying the running dispatch total.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - At most one detail record per step (uq_step_detail_step).
    - A QC sign-off always records pass and rejected quantities, the
      signer and the sign-off time together, and accepts the record.
    - A DispatchProcess detail reaches accept only through reconciliation.
    - Flush-only.

Failure modes:
    - InvalidPlanningError when a sign-off targets a non-QualityDept step.
    - ValueError on negative quantities.
    - InvalidTransitionError when an update would set the DispatchProcess
      status or quantities; only dispatch reconciliation writes those.
"""

from datetime import datetime
from typing import Any

from production_kernel.domain.step_types import DetailStatus, StepName
from production_kernel.exceptions import InvalidPlanningError, InvalidTransitionError
from production_kernel.logging_config import get_logger
from production_kernel.models.planning import JobStep
from production_kernel.models.step_detail import DispatchProcessRecord, StepDetailRecord
from production_kernel.services.base import BaseService

logger = get_logger("services.step_detail")


def _check_quantity(name: str, value: int | None) -> None:
    if value is not None and value < 0:
        raise ValueError(f"{name} must not be negative, got {value}")


def _reject_dispatch_outcome_write(
    step: JobStep,
    status: DetailStatus | None,
    quantity: int | None,
    rejected_quantity: int | None,
) -> None:
    # Dispatch status and quantities come from reconciliation only.
    if status is not None:
        current = step.detail.status if step.detail is not None else DetailStatus.IN_PROGRESS.value
        raise InvalidTransitionError(step.step_name, current, DetailStatus(status).value)
    for name, value in (("quantity", quantity), ("rejected_quantity", rejected_quantity)):
        if value is not None:
            raise InvalidTransitionError(step.step_name, "reconciled", f"{name}={value}")


class StepDetailService(BaseService[StepDetailRecord]):
    """Detail-record persistence for steps."""

    def get_or_create(self, step: JobStep, operator_id: str | None = None) -> StepDetailRecord:
        """Return the step's detail record, creating an in-progress one if absent."""
        if step.detail is not None:
            return step.detail

        step_name = StepName.parse(step.step_name)
        record_cls = (
            DispatchProcessRecord
            if step_name.requires_dispatch_reconciliation
            else StepDetailRecord
        )
        record = record_cls(
            job_step_id=step.id,
            nrc_job_no=step.nrc_job_no,
            step_name=step_name.value,
            status=DetailStatus.IN_PROGRESS.value,
            operator_id=operator_id,
            fields={},
        )
        if isinstance(record, DispatchProcessRecord):
            record.total_dispatched_qty = 0
        step.detail = record
        self.session.add(record)
        self.session.flush()

        logger.info(
            "step_detail_created",
            extra={
                "nrc_job_no": step.nrc_job_no,
                "step_no": step.step_no,
                "step_name": step_name.value,
                "record_type": record.record_type,
            },
        )
        return record

    def update(
        self,
        step: JobStep,
        *,
        operator_id: str | None = None,
        status: DetailStatus | None = None,
        quantity: int | None = None,
        rejected_quantity: int | None = None,
        remarks: str | None = None,
        fields: dict[str, Any] | None = None,
    ) -> StepDetailRecord:
        """
        Upsert the detail record.  ``None`` arguments leave the stored value
        unchanged; ``fields`` is merged key by key.
        """
        _check_quantity("quantity", quantity)
        _check_quantity("rejected_quantity", rejected_quantity)
        if StepName.parse(step.step_name).requires_dispatch_reconciliation:
            _reject_dispatch_outcome_write(step, status, quantity, rejected_quantity)

        record = self.get_or_create(step, operator_id)
        if status is not None:
            record.status = DetailStatus(status).value
        if quantity is not None:
            record.quantity = quantity
        if rejected_quantity is not None:
            record.rejected_quantity = rejected_quantity
        if remarks is not None:
            record.remarks = remarks
        if operator_id is not None:
            record.operator_id = operator_id
        if fields:
            record.fields = {**(record.fields or {}), **fields}
        self.session.flush()

        logger.info(
            "step_detail_updated",
            extra={
                "nrc_job_no": step.nrc_job_no,
                "step_no": step.step_no,
                "detail_status": record.status,
                "quantity": record.quantity,
            },
        )
        return record

    def sign_off_quality(
        self,
        step: JobStep,
        *,
        signed_by: str,
        pass_quantity: int,
        rejected_quantity: int,
        signed_at: datetime | None = None,
        remarks: str | None = None,
    ) -> StepDetailRecord:
        """Record the QC sign-off and accept the QualityDept detail record."""
        if StepName.parse(step.step_name) is not StepName.QUALITY_DEPT:
            raise InvalidPlanningError(
                step.nrc_job_no,
                f"step {step.step_no} is {step.step_name}, not {StepName.QUALITY_DEPT.value}",
            )
        record = self.update(
            step,
            operator_id=signed_by,
            status=DetailStatus.ACCEPT,
            quantity=pass_quantity,
            rejected_quantity=rejected_quantity,
            remarks=remarks,
        )
        record.qc_check_sign_by = signed_by
        record.qc_check_at = signed_at or self._clock.now()
        self.session.flush()

        logger.info(
            "quality_signed_off",
            extra={
                "nrc_job_no": step.nrc_job_no,
                "step_no": step.step_no,
                "pass_quantity": pass_quantity,
                "rejected_quantity": rejected_quantity,
                "signed_by": signed_by,
            },
        )
        return record
