"""
Module: production_kernel.selectors.machine_selector
Responsibility: Read the machine registry and machine claims as snapshots.
Architecture position: Kernel > Selectors.  Read-only.
"""

from uuid import UUID

from sqlalchemy import select

from production_kernel.domain.dtos import ClaimSnapshot, HeldMachine, MachineCatalog, MachineInfo
from production_kernel.domain.step_types import ClaimStatus, StepName
from production_kernel.models.machine import Machine
from production_kernel.models.machine_claim import MachineClaim
from production_kernel.models.planning import JobStep
from production_kernel.selectors.base import BaseSelector


def claim_snapshot(claim: MachineClaim) -> ClaimSnapshot:
    return ClaimSnapshot(
        claim_id=claim.id,
        machine_id=claim.machine_id,
        started_by_machine_id=claim.started_by_machine_id,
        status=ClaimStatus(claim.status),
        started_at=claim.started_at,
        operator_id=claim.operator_id,
    )


class MachineSelector(BaseSelector[Machine]):
    """Machine catalog and claim reads."""

    def catalog(self) -> MachineCatalog:
        """Snapshot of every registered machine, active or not."""
        machines = self.session.execute(
            select(Machine).order_by(Machine.machine_code)
        ).scalars()
        return MachineCatalog(
            machines=tuple(
                MachineInfo(
                    machine_id=m.id,
                    machine_code=m.machine_code,
                    machine_type=m.machine_type,
                    unit=m.unit,
                    is_active=m.is_active,
                )
                for m in machines
            )
        )

    def claims_for_step(self, step_id: UUID) -> tuple[ClaimSnapshot, ...]:
        claims = self.session.execute(
            select(MachineClaim)
            .where(MachineClaim.job_step_id == step_id)
            .order_by(MachineClaim.machine_id)
            .execution_options(populate_existing=True)
        ).scalars()
        return tuple(claim_snapshot(c) for c in claims)

    def held_machines(self) -> tuple[HeldMachine, ...]:
        """Every claim currently on hold, oldest start first."""
        rows = self.session.execute(
            select(MachineClaim, JobStep.step_name, Machine.machine_code)
            .join(JobStep, JobStep.id == MachineClaim.job_step_id)
            .join(Machine, Machine.id == MachineClaim.machine_id)
            .where(MachineClaim.status == ClaimStatus.HOLD.value)
            .order_by(MachineClaim.started_at, MachineClaim.nrc_job_no, MachineClaim.step_no)
        ).all()
        return tuple(
            HeldMachine(
                claim_id=claim.id,
                nrc_job_no=claim.nrc_job_no,
                step_no=claim.step_no,
                step_name=StepName.parse(step_name),
                machine_id=claim.machine_id,
                machine_code=machine_code,
                operator_id=claim.operator_id,
                hold_remark=claim.hold_remark,
                started_at=claim.started_at,
            )
            for claim, step_name, machine_code in rows
        )
