"""
StepStateService -- persists step state-machine decisions.

Responsibility:
    Looks up step rows and writes the outcome of
    ``production_engines.transitions.evaluate_transition`` with a
    compare-and-set on the status the caller observed.  Also performs the
    privileged revert of a started step back to ``planned`` on claim release.

Architecture position:
    Kernel > Services -- imperative shell.
    Called only by WorkflowOrchestrator and MachineAllocationService.

Invariants enforced:
    - Every status write is ``UPDATE job_steps ... WHERE id = ? AND
      status = <observed>``; zero affected rows means another request moved
      the step first.
    - start_date is stamped once: a resume from major_hold keeps the
      original start.
    - end_date/completed_by are stamped only on a transition into ``stop``.
    - Flush-only: never commits or rolls back.

Failure modes:
    - StepNotFoundError: no step with that number in the planning.
    - ConcurrentModificationError: the compare-and-set lost.
"""

from uuid import UUID

from sqlalchemy import select, update

from production_engines.transitions import TransitionDecision
from production_kernel.domain.dtos import StepRecord
from production_kernel.domain.step_types import StepName, StepStatus
from production_kernel.exceptions import ConcurrentModificationError, StepNotFoundError
from production_kernel.logging_config import get_logger
from production_kernel.models.planning import JobPlanning, JobStep
from production_kernel.services.base import BaseService

logger = get_logger("services.step_state")


def step_record(step: JobStep) -> StepRecord:
    return StepRecord(
        step_id=step.id,
        job_planning_id=step.job_planning_id,
        nrc_job_no=step.nrc_job_no,
        step_no=step.step_no,
        step_name=StepName.parse(step.step_name),
        status=StepStatus(step.status),
        start_date=step.start_date,
        end_date=step.end_date,
        started_by=step.started_by,
        completed_by=step.completed_by,
    )


class StepStateService(BaseService[JobStep]):
    """Compare-and-set persistence of step status changes."""

    def get_step(self, planning: JobPlanning, step_no: int) -> JobStep:
        step = self.session.execute(
            select(JobStep).where(
                JobStep.job_planning_id == planning.id,
                JobStep.step_no == step_no,
            )
        ).scalar_one_or_none()
        if step is None:
            raise StepNotFoundError(planning.nrc_job_no, step_no)
        return step

    def lock_step(self, step_id: UUID) -> JobStep:
        """Re-read the step under SELECT ... FOR UPDATE (Postgres row lock)."""
        return self.session.execute(
            select(JobStep)
            .where(JobStep.id == step_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one()

    def _compare_and_set(self, step: JobStep, observed: StepStatus, values: dict) -> None:
        self.session.flush()
        result = self.session.execute(
            update(JobStep)
            .where(JobStep.id == step.id, JobStep.status == observed.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrentModificationError("JobStep", str(step.id), observed.value)
        self.session.refresh(step)

    def apply(self, step: JobStep, decision: TransitionDecision, actor_id: str) -> StepRecord:
        """
        Persist an APPLIED decision.

        Preconditions:
            ``decision.is_applied`` and ``decision.from_status`` is the
            status the caller read from ``step``.

        Raises:
            ConcurrentModificationError: the step's status changed meanwhile.
        """
        if not decision.is_applied:
            raise ValueError(f"Cannot persist a {decision.outcome.value} decision")

        now = self._clock.now()
        values: dict = {"status": decision.to_status.value}
        if decision.stamps_start and step.start_date is None:
            values["start_date"] = now
            values["started_by"] = actor_id
        if decision.stamps_end:
            values["end_date"] = now
            values["completed_by"] = actor_id

        self._compare_and_set(step, decision.from_status, values)

        logger.info(
            "step_transition_applied",
            extra={
                "nrc_job_no": step.nrc_job_no,
                "step_no": step.step_no,
                "step_name": step.step_name,
                "from_status": decision.from_status.value,
                "to_status": decision.to_status.value,
                "action": decision.transition.action if decision.transition else None,
                "actor_id": actor_id,
            },
        )
        return step_record(step)

    def revert_to_planned(self, step: JobStep, actor_id: str) -> StepRecord:
        """Undo a start: back to ``planned`` with start stamps cleared."""
        observed = StepStatus(step.status)
        self._compare_and_set(
            step,
            observed,
            {
                "status": StepStatus.PLANNED.value,
                "start_date": None,
                "started_by": None,
                "end_date": None,
                "completed_by": None,
            },
        )
        logger.info(
            "step_reverted_to_planned",
            extra={
                "nrc_job_no": step.nrc_job_no,
                "step_no": step.step_no,
                "from_status": observed.value,
                "actor_id": actor_id,
            },
        )
        return step_record(step)
