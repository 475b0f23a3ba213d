"""
PlanningService -- creates a job's planning and its ordered steps.

Responsibility:
    Validates a requested step sequence, enforces a single live planning
    per job, creates the JobPlanning and JobStep rows, records each
    machine-backed step's candidate machines and seeds an ``available``
    claim row for every eligible machine.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - A job has at most one live planning.
    - Step numbers are positive and strictly increasing in the given order.
    - A step type appears at most once, and steps follow production order
      (the printing/corrugation pair may come in either order).
    - Flush-only.

Failure modes:
    - InvalidPlanningError: unknown job, foreign purchase order, empty or
      malformed step sequence.
    - UnknownStepNameError: a step name outside the fixed set.
    - PlanningAlreadyExistsError: the job already has a live planning.
"""

from collections.abc import Sequence
from uuid import UUID

from production_engines.claims import eligible_machines
from production_kernel.domain.dtos import MachineCatalog, PlanningSnapshot
from production_kernel.domain.policies import MachineTypeRules
from production_kernel.domain.step_types import JobDemand, StepName, StepStatus
from production_kernel.exceptions import InvalidPlanningError, PlanningAlreadyExistsError
from production_kernel.logging_config import get_logger
from production_kernel.models.job import PurchaseOrder
from production_kernel.models.planning import JobPlanning, JobStep
from production_kernel.selectors.planning_selector import PlanningSelector
from production_kernel.services.base import BaseService
from production_kernel.services.machine_allocation_service import MachineAllocationService

logger = get_logger("services.planning")

# Position of each step type in the production line; the parallel pair shares one.
_LINE_POSITION = {
    StepName.PAPER_STORE: 0,
    StepName.PRINTING_DETAILS: 1,
    StepName.CORRUGATION: 1,
    StepName.FLUTE_LAMINATE_BOARD_CONVERSION: 2,
    StepName.PUNCHING: 3,
    StepName.SIDE_FLAP_PASTING: 4,
    StepName.QUALITY_DEPT: 5,
    StepName.DISPATCH_PROCESS: 6,
}


def parse_step_sequence(
    nrc_job_no: str,
    steps: Sequence[tuple[int, StepName | str]],
) -> list[tuple[int, StepName]]:
    """Validate ``(step_no, step_name)`` pairs and parse the names."""
    if not steps:
        raise InvalidPlanningError(nrc_job_no, "a planning needs at least one step")

    parsed = [(int(no), StepName.parse(name)) for no, name in steps]
    seen: set[StepName] = set()
    previous_no = 0
    previous_position = -1
    for step_no, name in parsed:
        if step_no <= previous_no:
            raise InvalidPlanningError(
                nrc_job_no,
                f"step numbers must be positive and strictly increasing (got {step_no} "
                f"after {previous_no})",
            )
        if name in seen:
            raise InvalidPlanningError(nrc_job_no, f"step {name.value} appears twice")
        if _LINE_POSITION[name] < previous_position:
            raise InvalidPlanningError(
                nrc_job_no, f"step {name.value} is out of production order"
            )
        seen.add(name)
        previous_no = step_no
        previous_position = _LINE_POSITION[name]
    return parsed


class PlanningService(BaseService[JobPlanning]):
    """Planning creation."""

    def create_planning(
        self,
        nrc_job_no: str,
        steps: Sequence[tuple[int, StepName | str]],
        *,
        catalog: MachineCatalog,
        rules: MachineTypeRules,
        job_demand: JobDemand | None = None,
        purchase_order_id: UUID | None = None,
        finished_goods_qty: int | None = None,
    ) -> PlanningSnapshot:
        """
        Create the job's planning.

        Args:
            steps: ``(step_no, step_name)`` pairs in production order.
            catalog: Machine registry snapshot used to seed claims.
            rules: Step -> machine type mapping.
            job_demand: Defaults to the job's own demand class.

        Returns:
            PlanningSnapshot of the new planning, every step ``planned``.
        """
        job = self._lock_job(nrc_job_no)
        if job is None:
            raise InvalidPlanningError(nrc_job_no, "unknown job")

        selector = PlanningSelector(self.session)
        existing = selector.planning_ids(nrc_job_no)
        if existing:
            raise PlanningAlreadyExistsError(nrc_job_no, str(existing[0]))

        if purchase_order_id is not None:
            po = self.session.get(PurchaseOrder, purchase_order_id)
            if po is None or po.nrc_job_no != nrc_job_no:
                raise InvalidPlanningError(
                    nrc_job_no, f"purchase order {purchase_order_id} does not belong to the job"
                )

        parsed = parse_step_sequence(nrc_job_no, steps)

        planning = JobPlanning(
            nrc_job_no=nrc_job_no,
            job_demand=JobDemand(job_demand or job.job_demand).value,
            purchase_order_id=purchase_order_id,
            finished_goods_qty=finished_goods_qty,
            created_at=self._clock.now(),
        )
        self.session.add(planning)
        self.session.flush()

        allocation = MachineAllocationService(self.session, self._clock)
        for step_no, name in parsed:
            machines = eligible_machines(name, catalog, rules)
            step = JobStep(
                job_planning_id=planning.id,
                nrc_job_no=nrc_job_no,
                step_no=step_no,
                step_name=name.value,
                status=StepStatus.PLANNED.value,
                machine_details=[m.as_details() for m in machines],
            )
            planning.steps.append(step)
            self.session.flush()
            allocation.seed_claims(step, machines)

        logger.info(
            "planning_created",
            extra={
                "nrc_job_no": nrc_job_no,
                "job_planning_id": str(planning.id),
                "job_demand": planning.job_demand,
                "steps": [name.value for _, name in parsed],
            },
        )
        return selector.snapshot(planning)
