"""
JobCompletionService -- one-way archival of a finished job.

Responsibility:
    Decides whether a job's selected planning is finished (every step
    ``stop`` and the dispatch detail ``accept``) and, if so, snapshots the
    planning, its steps, claims and detail records into a CompletedJob row,
    deletes the live rows and deactivates the job.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by WorkflowOrchestrator after every stop, inside the per-job lock.

Invariants enforced:
    - Check and archive happen after ``SELECT ... FOR UPDATE`` on the job
      row, against freshly re-read state.
    - completed_jobs.job_planning_id is unique: a planning is archived once.
    - All-or-nothing: archive insert, live-row deletes and the job status
      change are flushed in the caller's transaction.
    - The finished-goods ledger is not touched; it outlives the planning.

Failure modes:
    - Not-ready states return CompletionResult(completed=False, reason=...):
      ``job_not_found``, ``planning_not_found``, ``steps_incomplete``,
      ``dispatch_not_accepted``.
    - Database errors propagate; the caller rolls the whole unit back.
"""

import math
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import delete, select

from production_kernel.domain.dtos import CompletionResult
from production_kernel.domain.step_types import DetailStatus, StepName, StepStatus
from production_kernel.logging_config import get_logger
from production_kernel.models.completed_job import CompletedJob
from production_kernel.models.job import Job, PurchaseOrder
from production_kernel.models.machine_claim import MachineClaim
from production_kernel.models.planning import JobPlanning, JobStep
from production_kernel.models.step_detail import DispatchHistoryEntry, StepDetailRecord
from production_kernel.selectors.planning_selector import PlanningSelector
from production_kernel.services.base import BaseService

logger = get_logger("services.job_completion")

DEFAULT_COMPLETED_BY = "system"
DEFAULT_REMARKS = "Automatically completed by system"
FINAL_STATUS = "completed"


def json_safe(value: Any) -> Any:
    """Convert a snapshot into values a JSON column can store."""
    if isinstance(value, dict):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_safe(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    return value


def total_duration_days(steps: list[JobStep]) -> int | None:
    """Whole days, rounded up, from the earliest start to the latest end."""
    starts = [s.start_date for s in steps if s.start_date is not None]
    ends = [s.end_date for s in steps if s.end_date is not None]
    if not starts or not ends:
        return None
    seconds = (max(ends) - min(starts)).total_seconds()
    return max(0, math.ceil(seconds / 86400))


class JobCompletionService(BaseService[CompletedJob]):
    """Completion check and archival."""

    def readiness(self, planning: JobPlanning) -> str | None:
        """None when the planning can be archived, else the blocking reason."""
        steps = list(planning.steps)
        if not steps or any(StepStatus(s.status) is not StepStatus.STOP for s in steps):
            return "steps_incomplete"
        dispatch = next(
            (s for s in steps if StepName.parse(s.step_name) is StepName.DISPATCH_PROCESS),
            None,
        )
        if (
            dispatch is None
            or dispatch.detail is None
            or DetailStatus(dispatch.detail.status) is not DetailStatus.ACCEPT
        ):
            return "dispatch_not_accepted"
        return None

    def check_and_complete(
        self,
        nrc_job_no: str,
        *,
        completed_by: str | None = None,
        remarks: str | None = None,
    ) -> CompletionResult:
        """
        Archive the job if its selected planning is finished.

        Postconditions (when completed):
            - One CompletedJob row for the planning.
            - No planning, step, claim, detail or history rows remain for it.
            - The job's status is ``inactive``.
        """
        job = self._lock_job(nrc_job_no)
        if job is None:
            return CompletionResult(completed=False, reason="job_not_found")

        planning = PlanningSelector(self.session).current_planning(nrc_job_no)
        if planning is None:
            return CompletionResult(completed=False, reason="planning_not_found")

        reason = self.readiness(planning)
        if reason is not None:
            logger.debug(
                "job_completion_not_ready",
                extra={"nrc_job_no": nrc_job_no, "reason": reason},
            )
            return CompletionResult(completed=False, reason=reason)

        archive = self._archive(job, planning, completed_by or DEFAULT_COMPLETED_BY, remarks)
        self._delete_live_rows(planning)
        job.deactivate()
        self.session.flush()

        logger.info(
            "job_auto_completed",
            extra={
                "nrc_job_no": nrc_job_no,
                "job_planning_id": str(archive.job_planning_id),
                "completed_job_id": str(archive.id),
                "total_duration_days": archive.total_duration_days,
                "completed_by": archive.completed_by,
            },
        )
        return CompletionResult(completed=True, completed_job_id=archive.id)

    def _archive(
        self,
        job: Job,
        planning: JobPlanning,
        completed_by: str,
        remarks: str | None,
    ) -> CompletedJob:
        steps = sorted(planning.steps, key=lambda s: s.step_no)
        purchase_order = (
            self.session.get(PurchaseOrder, planning.purchase_order_id)
            if planning.purchase_order_id
            else None
        )

        all_steps = []
        all_step_details: dict[str, list[dict[str, Any]]] = {}
        for step in steps:
            snapshot = step.to_snapshot()
            snapshot["claims"] = [c.to_snapshot() for c in step.claims]
            all_steps.append(snapshot)
            if step.detail is not None:
                key = StepName.parse(step.step_name).detail_key
                all_step_details.setdefault(key, []).append(step.detail.to_snapshot())

        archive = CompletedJob(
            nrc_job_no=job.nrc_job_no,
            job_planning_id=planning.id,
            job_demand=planning.job_demand,
            job_details=json_safe({**job.to_snapshot(), "planning": planning.to_snapshot()}),
            purchase_order_details=(
                json_safe(purchase_order.to_snapshot()) if purchase_order else None
            ),
            all_steps=json_safe(all_steps),
            all_step_details=json_safe(all_step_details),
            completed_by=completed_by,
            total_duration_days=total_duration_days(steps),
            remarks=remarks or DEFAULT_REMARKS,
            final_status=FINAL_STATUS,
            completed_at=self._clock.now(),
        )
        self.session.add(archive)
        self.session.flush()
        return archive

    def _delete_live_rows(self, planning: JobPlanning) -> None:
        step_ids = select(JobStep.id).where(JobStep.job_planning_id == planning.id)
        record_ids = select(StepDetailRecord.id).where(StepDetailRecord.job_step_id.in_(step_ids))

        self.session.execute(
            delete(DispatchHistoryEntry).where(DispatchHistoryEntry.record_id.in_(record_ids))
        )
        self.session.execute(
            delete(StepDetailRecord).where(StepDetailRecord.job_step_id.in_(step_ids))
        )
        self.session.execute(delete(MachineClaim).where(MachineClaim.job_step_id.in_(step_ids)))
        self.session.execute(delete(JobStep).where(JobStep.job_planning_id == planning.id))
        self.session.execute(delete(JobPlanning).where(JobPlanning.id == planning.id))
