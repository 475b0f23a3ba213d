"""
Module: production_kernel.selectors.planning_selector
Responsibility: Choose the planning a job's requests act on and load it as a
    PlanningSnapshot for the pure engines.
Architecture position: Kernel > Selectors.  Read-only.

Selection policy:
    A job normally has exactly one live planning (PlanningService enforces
    this on create).  Where historical data holds several, the selector is
    deterministic: high-demand plannings first, then the most recently
    created, then the lowest id.

Failure modes:
    - PlanningNotFoundError from ``require_current``.
"""

from uuid import UUID

from sqlalchemy import case, select
from sqlalchemy.orm import selectinload

from production_kernel.domain.dtos import DetailSnapshot, PlanningSnapshot, StepSnapshot
from production_kernel.domain.step_types import (
    DetailStatus,
    JobDemand,
    StepName,
    StepStatus,
)
from production_kernel.exceptions import PlanningNotFoundError
from production_kernel.models.planning import JobPlanning, JobStep
from production_kernel.models.step_detail import StepDetailRecord
from production_kernel.selectors.base import BaseSelector


def detail_snapshot(record: StepDetailRecord | None) -> DetailSnapshot | None:
    if record is None:
        return None
    return DetailSnapshot(
        status=DetailStatus(record.status),
        quantity=record.quantity,
        rejected_quantity=record.rejected_quantity,
        qc_check_sign_by=record.qc_check_sign_by,
        qc_check_at=record.qc_check_at,
    )


def step_snapshot(step: JobStep) -> StepSnapshot:
    return StepSnapshot(
        step_id=step.id,
        step_no=step.step_no,
        step_name=StepName.parse(step.step_name),
        status=StepStatus(step.status),
        detail=detail_snapshot(step.detail),
    )


class PlanningSelector(BaseSelector[JobPlanning]):
    """Read access to plannings, their steps and step details."""

    def _ordered_for_job(self, nrc_job_no: str):
        return (
            select(JobPlanning)
            .where(JobPlanning.nrc_job_no == nrc_job_no)
            .order_by(
                case((JobPlanning.job_demand == JobDemand.HIGH.value, 0), else_=1),
                JobPlanning.created_at.desc(),
                JobPlanning.id,
            )
        )

    def current_planning(self, nrc_job_no: str) -> JobPlanning | None:
        """Row lookup for services: the selected planning, steps preloaded."""
        stmt = (
            self._ordered_for_job(nrc_job_no)
            .options(selectinload(JobPlanning.steps).selectinload(JobStep.detail))
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return self.session.execute(stmt).scalars().first()

    def require_current(self, nrc_job_no: str) -> JobPlanning:
        planning = self.current_planning(nrc_job_no)
        if planning is None:
            raise PlanningNotFoundError(nrc_job_no)
        return planning

    def planning_ids(self, nrc_job_no: str) -> list[UUID]:
        """Every planning for the job, in selection order."""
        return list(
            self.session.execute(
                self._ordered_for_job(nrc_job_no).with_only_columns(JobPlanning.id)
            ).scalars()
        )

    def snapshot(self, planning: JobPlanning) -> PlanningSnapshot:
        return PlanningSnapshot(
            job_planning_id=planning.id,
            nrc_job_no=planning.nrc_job_no,
            job_demand=JobDemand(planning.job_demand),
            purchase_order_id=planning.purchase_order_id,
            steps=tuple(step_snapshot(s) for s in sorted(planning.steps, key=lambda s: s.step_no)),
        )

    def get_snapshot(self, nrc_job_no: str) -> PlanningSnapshot:
        """The selected planning of a job as an immutable snapshot."""
        return self.snapshot(self.require_current(nrc_job_no))
