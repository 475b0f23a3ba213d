"""
MachineAllocationService -- persists machine claims on job steps.

Responsibility:
    Seeds claim rows when a planning is created, claims a step for a
    machine when the step starts, runs the per-machine work lifecycle
    (hold, resume, complete) and performs the privileged release.  The
    visibility and exclusivity rules themselves are pure
    (``production_engines.claims``); this service applies them to rows.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by PlanningService and WorkflowOrchestrator.

Invariants enforced:
    - The claim is a conditional update
      ``WHERE started_by_machine_id IS NULL``, flushed inside a savepoint
      in the same transaction as the step's planned -> start write.
    - The partial unique index uq_machine_claim_one_owner backs
      exclusivity; a violation is reported as MachineAlreadyClaimedError.
    - Claim lifecycle: available -> in_progress <-> hold, in_progress -> stop.
      Release is the only way back to available and clears ownership.
    - Flush-only.

Failure modes:
    - MachineNotEligibleError / MachineAlreadyClaimedError from the claim
      rules.
    - ClaimNotFoundError: the machine has no claim on the step.
    - InvalidClaimStateError: lifecycle action not valid from the claim's
      status, or the machine is not the step's owner.
    - ConcurrentModificationError: the machine's own claim row was taken
      by a concurrent request between read and write.
"""

from collections.abc import Sequence
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from production_engines.claims import check_claim, visible_machines
from production_kernel.domain.dtos import HeldMachine, MachineCatalog, MachineInfo, VisibleMachine
from production_kernel.domain.policies import MachineTypeRules
from production_kernel.domain.step_types import ClaimStatus, StepName
from production_kernel.exceptions import (
    ClaimNotFoundError,
    ConcurrentModificationError,
    InvalidClaimStateError,
    MachineAlreadyClaimedError,
)
from production_kernel.logging_config import get_logger
from production_kernel.models.machine_claim import MachineClaim
from production_kernel.models.planning import JobStep
from production_kernel.selectors.machine_selector import MachineSelector
from production_kernel.services.base import BaseService

logger = get_logger("services.machine_allocation")


class MachineAllocationService(BaseService[MachineClaim]):
    """Claim persistence and the per-machine work lifecycle."""

    def _claim_row(self, step_id: UUID, machine_id: UUID) -> MachineClaim | None:
        return self.session.execute(
            select(MachineClaim)
            .where(
                MachineClaim.job_step_id == step_id,
                MachineClaim.machine_id == machine_id,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _owned_claim(self, step: JobStep, machine_id: UUID, action: str) -> MachineClaim:
        claim = self._claim_row(step.id, machine_id)
        if claim is None:
            raise ClaimNotFoundError(str(step.id), str(machine_id))
        if not claim.is_owner:
            raise InvalidClaimStateError(str(claim.id), ClaimStatus(claim.status).value, action)
        return claim

    def _new_claim(self, step: JobStep, machine_id: UUID) -> MachineClaim:
        claim = MachineClaim(
            job_step_id=step.id,
            machine_id=machine_id,
            nrc_job_no=step.nrc_job_no,
            step_no=step.step_no,
            status=ClaimStatus.AVAILABLE.value,
        )
        self.session.add(claim)
        return claim

    # ------------------------------------------------------------------
    # Seeding and reads
    # ------------------------------------------------------------------

    def seed_claims(self, step: JobStep, machines: Sequence[MachineInfo]) -> list[MachineClaim]:
        """One ``available`` claim row per eligible machine."""
        claims = [self._new_claim(step, m.machine_id) for m in machines]
        self.session.flush()
        return claims

    def visible_machines(
        self,
        step: JobStep,
        catalog: MachineCatalog,
        rules: MachineTypeRules,
    ) -> tuple[VisibleMachine, ...]:
        return visible_machines(
            step_name=StepName.parse(step.step_name),
            catalog=catalog,
            rules=rules,
            claims=MachineSelector(self.session).claims_for_step(step.id),
        )

    def held_machines(self) -> tuple[HeldMachine, ...]:
        return MachineSelector(self.session).held_machines()

    # ------------------------------------------------------------------
    # Claiming
    # ------------------------------------------------------------------

    def claim_for_start(
        self,
        step: JobStep,
        *,
        machine_id: UUID,
        operator_id: str,
        catalog: MachineCatalog,
        rules: MachineTypeRules,
    ) -> MachineClaim:
        """
        Make ``machine_id`` the exclusive owner of ``step``.

        Re-claiming by the current owner is idempotent and returns its
        existing claim.

        Raises:
            MachineNotEligibleError, MachineAlreadyClaimedError,
            ConcurrentModificationError.
        """
        claims = MachineSelector(self.session).claims_for_step(step.id)
        decision = check_claim(
            step_id=step.id,
            step_name=StepName.parse(step.step_name),
            machine_id=machine_id,
            catalog=catalog,
            rules=rules,
            claims=claims,
        )

        claim = self._claim_row(step.id, machine_id)
        if decision.already_owner and claim is not None:
            return claim

        if claim is None:
            claim = self._new_claim(step, machine_id)
            self.session.flush()

        try:
            with self.session.begin_nested():
                result = self.session.execute(
                    update(MachineClaim)
                    .where(
                        MachineClaim.id == claim.id,
                        MachineClaim.started_by_machine_id.is_(None),
                    )
                    .values(
                        started_by_machine_id=machine_id,
                        status=ClaimStatus.IN_PROGRESS.value,
                        operator_id=operator_id,
                        started_at=self._clock.now(),
                        completed_at=None,
                        hold_remark=None,
                    )
                    .execution_options(synchronize_session=False)
                )
        except IntegrityError:
            owner = next((c for c in claims if c.is_owner_claim), None)
            logger.warning(
                "machine_claim_conflict",
                extra={"step_id": str(step.id), "machine_id": str(machine_id)},
            )
            raise MachineAlreadyClaimedError(
                str(step.id),
                str(machine_id),
                str(owner.machine_id) if owner else "unknown",
            ) from None

        if result.rowcount != 1:
            raise ConcurrentModificationError("MachineClaim", str(claim.id), "unclaimed")
        self.session.refresh(claim)

        logger.info(
            "machine_claimed",
            extra={
                "nrc_job_no": step.nrc_job_no,
                "step_no": step.step_no,
                "machine_id": str(machine_id),
                "machine_code": decision.machine.machine_code,
                "operator_id": operator_id,
            },
        )
        return claim

    # ------------------------------------------------------------------
    # Per-machine work lifecycle
    # ------------------------------------------------------------------

    def _move(
        self,
        claim: MachineClaim,
        *,
        allowed_from: ClaimStatus,
        to: ClaimStatus,
        action: str,
        **changes: Any,
    ) -> MachineClaim:
        current = ClaimStatus(claim.status)
        if current is not allowed_from:
            raise InvalidClaimStateError(str(claim.id), current.value, action)
        claim.status = to.value
        for name, value in changes.items():
            setattr(claim, name, value)
        self.session.flush()
        logger.info(
            f"machine_work_{action}",
            extra={
                "claim_id": str(claim.id),
                "nrc_job_no": claim.nrc_job_no,
                "step_no": claim.step_no,
                "machine_id": str(claim.machine_id),
                "from_status": current.value,
                "to_status": to.value,
            },
        )
        return claim

    def hold(self, step: JobStep, machine_id: UUID, *, remark: str | None) -> MachineClaim:
        claim = self._owned_claim(step, machine_id, "hold")
        return self._move(
            claim,
            allowed_from=ClaimStatus.IN_PROGRESS,
            to=ClaimStatus.HOLD,
            action="hold",
            hold_remark=remark,
        )

    def resume(self, step: JobStep, machine_id: UUID) -> MachineClaim:
        claim = self._owned_claim(step, machine_id, "resume")
        return self._move(
            claim,
            allowed_from=ClaimStatus.HOLD,
            to=ClaimStatus.IN_PROGRESS,
            action="resume",
        )

    def complete(
        self,
        step: JobStep,
        machine_id: UUID,
        *,
        form_data: dict[str, Any] | None,
    ) -> MachineClaim:
        claim = self._owned_claim(step, machine_id, "complete")
        return self._move(
            claim,
            allowed_from=ClaimStatus.IN_PROGRESS,
            to=ClaimStatus.STOP,
            action="complete",
            completed_at=self._clock.now(),
            form_data=dict(form_data or {}),
        )

    def release(self, step: JobStep, actor_id: str) -> MachineClaim:
        """
        Reset the step's owning claim to ``available`` with no owner.

        Raises:
            ClaimNotFoundError: the step has no owning claim.
        """
        owner = self.session.execute(
            select(MachineClaim)
            .where(
                MachineClaim.job_step_id == step.id,
                MachineClaim.started_by_machine_id.is_not(None),
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if owner is None:
            raise ClaimNotFoundError(str(step.id), "owner")

        previous = ClaimStatus(owner.status)
        owner.status = ClaimStatus.AVAILABLE.value
        owner.started_by_machine_id = None
        owner.operator_id = None
        owner.started_at = None
        owner.completed_at = None
        owner.hold_remark = None
        owner.form_data = None
        self.session.flush()

        logger.info(
            "machine_claim_released",
            extra={
                "nrc_job_no": step.nrc_job_no,
                "step_no": step.step_no,
                "machine_id": str(owner.machine_id),
                "from_status": previous.value,
                "actor_id": actor_id,
            },
        )
        return owner
