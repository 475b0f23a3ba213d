"""
Tests for MachineAllocationService.

Covers:
- Claiming a step for a machine and idempotent re-claim
- Exclusive ownership against a second machine
- Hold / resume / complete lifecycle and its state errors
- Privileged release
- Held-machine listing
"""

import pytest
from sqlalchemy.exc import IntegrityError

from production_kernel.domain.step_types import ClaimStatus, StepName
from production_kernel.exceptions import (
    ClaimNotFoundError,
    InvalidClaimStateError,
    MachineAlreadyClaimedError,
    MachineNotEligibleError,
)
from production_kernel.models.machine_claim import MachineClaim
from production_kernel.selectors.machine_selector import MachineSelector
from production_kernel.selectors.planning_selector import PlanningSelector
from production_kernel.services.machine_allocation_service import MachineAllocationService
from production_kernel.services.step_state_service import StepStateService


@pytest.fixture
def allocation(session, deterministic_clock):
    return MachineAllocationService(session, deterministic_clock)


@pytest.fixture
def catalog(session, machines):
    return MachineSelector(session).catalog()


@pytest.fixture
def punching_step(session, plan_job, deterministic_clock):
    snapshot = plan_job([(1, StepName.PUNCHING)])
    planning = PlanningSelector(session).require_current(snapshot.nrc_job_no)
    return StepStateService(session, deterministic_clock).get_step(planning, 1)


@pytest.fixture
def claimed(allocation, punching_step, machines, catalog, machine_rules):
    """punching_step claimed by AP-01."""
    return allocation.claim_for_start(
        punching_step,
        machine_id=machines["AP-01"].id,
        operator_id="op-1",
        catalog=catalog,
        rules=machine_rules,
    )


class TestClaimForStart:
    """Claiming a step."""

    def test_claim_makes_machine_owner(self, claimed, machines, deterministic_clock):
        assert claimed.started_by_machine_id == machines["AP-01"].id
        assert claimed.status == ClaimStatus.IN_PROGRESS.value
        assert claimed.operator_id == "op-1"
        assert claimed.started_at == deterministic_clock.now()

    def test_owner_reclaim_is_idempotent(
        self, allocation, claimed, punching_step, machines, catalog, machine_rules
    ):
        again = allocation.claim_for_start(
            punching_step,
            machine_id=machines["AP-01"].id,
            operator_id="op-2",
            catalog=catalog,
            rules=machine_rules,
        )

        assert again.id == claimed.id
        assert again.operator_id == "op-1"

    def test_second_machine_rejected(
        self, allocation, claimed, punching_step, machines, catalog, machine_rules
    ):
        with pytest.raises(MachineAlreadyClaimedError) as exc_info:
            allocation.claim_for_start(
                punching_step,
                machine_id=machines["AP-02"].id,
                operator_id="op-2",
                catalog=catalog,
                rules=machine_rules,
            )

        assert exc_info.value.owner_machine_id == str(machines["AP-01"].id)

    def test_ineligible_machine_rejected(
        self, allocation, punching_step, machines, catalog, machine_rules
    ):
        with pytest.raises(MachineNotEligibleError):
            allocation.claim_for_start(
                punching_step,
                machine_id=machines["CR-01"].id,
                operator_id="op-1",
                catalog=catalog,
                rules=machine_rules,
            )

    def test_only_owner_visible_after_claim(
        self, allocation, claimed, punching_step, machines, catalog, machine_rules
    ):
        visible = allocation.visible_machines(punching_step, catalog, machine_rules)

        assert [v.machine_code for v in visible] == ["AP-01"]

    def test_database_rejects_two_owners(self, session, claimed, punching_step, machines):
        """The partial unique index backs exclusivity."""
        other = session.query(MachineClaim).filter_by(
            job_step_id=punching_step.id, machine_id=machines["AP-02"].id
        ).one()

        with pytest.raises(IntegrityError):
            with session.begin_nested():
                other.started_by_machine_id = machines["AP-02"].id
                session.flush()


class TestLifecycle:
    """in_progress <-> hold, in_progress -> stop."""

    def test_hold_and_resume(self, allocation, claimed, punching_step, machines):
        held = allocation.hold(punching_step, machines["AP-01"].id, remark="die change")

        assert held.status == ClaimStatus.HOLD.value
        assert held.hold_remark == "die change"

        resumed = allocation.resume(punching_step, machines["AP-01"].id)

        assert resumed.status == ClaimStatus.IN_PROGRESS.value

    def test_complete_records_form(self, allocation, claimed, punching_step, machines, deterministic_clock):
        done = allocation.complete(
            punching_step, machines["AP-01"].id, form_data={"quantity": 980}
        )

        assert done.status == ClaimStatus.STOP.value
        assert done.completed_at == deterministic_clock.now()
        assert done.form_data == {"quantity": 980}

    def test_resume_requires_hold(self, allocation, claimed, punching_step, machines):
        with pytest.raises(InvalidClaimStateError, match="resume"):
            allocation.resume(punching_step, machines["AP-01"].id)

    def test_complete_from_hold_rejected(self, allocation, claimed, punching_step, machines):
        allocation.hold(punching_step, machines["AP-01"].id, remark=None)

        with pytest.raises(InvalidClaimStateError):
            allocation.complete(punching_step, machines["AP-01"].id, form_data=None)

    def test_non_owner_cannot_hold(self, allocation, claimed, punching_step, machines):
        with pytest.raises(InvalidClaimStateError):
            allocation.hold(punching_step, machines["AP-02"].id, remark=None)

    def test_machine_without_claim_row(self, allocation, claimed, punching_step, machines):
        with pytest.raises(ClaimNotFoundError):
            allocation.hold(punching_step, machines["PR-01"].id, remark=None)


class TestRelease:

    def test_release_clears_ownership(self, allocation, claimed, punching_step, catalog, machine_rules):
        released = allocation.release(punching_step, "admin-1")

        assert released.status == ClaimStatus.AVAILABLE.value
        assert released.started_by_machine_id is None
        assert released.operator_id is None
        visible = allocation.visible_machines(punching_step, catalog, machine_rules)
        assert len(visible) == 3

    def test_release_without_owner(self, allocation, punching_step):
        with pytest.raises(ClaimNotFoundError):
            allocation.release(punching_step, "admin-1")


def test_held_machines_listed(allocation, claimed, punching_step, machines):
    allocation.hold(punching_step, machines["AP-01"].id, remark="waiting for die")

    held = allocation.held_machines()

    assert len(held) == 1
    assert held[0].machine_code == "AP-01"
    assert held[0].step_name is StepName.PUNCHING
    assert held[0].hold_remark == "waiting for die"
