"""
End-to-end production scenarios through the WorkflowOrchestrator.

Covers:
- A: full dispatch drawing on banked finished goods
- B: over-request capped, excess banked
- C: downstream start blocked by an unaccepted parallel leg
- D: second machine rejected on a claimed step
- E: completion archives the job exactly once, and only once dispatch is reconciled
"""

import pytest
from sqlalchemy import func, select

from production_kernel.domain.dispatch import DispatchRequest
from production_kernel.domain.dtos import Actor, TransitionOutcome
from production_kernel.domain.step_types import (
    DetailStatus,
    JobDemand,
    LedgerEntryStatus,
    StepName,
    StepStatus,
)
from production_kernel.exceptions import (
    DependencyNotSatisfiedError,
    InvalidTransitionError,
    MachineAlreadyClaimedError,
    PlanningNotFoundError,
)
from production_kernel.models.completed_job import CompletedJob
from production_kernel.models.finished_goods import FinishedGoodsEntry

ADMIN = Actor(user_id="admin-1", roles=frozenset({"admin"}))
DISPATCHER = Actor(user_id="dx-1", roles=frozenset({"dispatch_executive"}))
DISPATCH_STEP = 8


@pytest.fixture
def job_at_dispatch(plan_job, driver_for, orchestrator):
    """
    Factory: a full planning walked through QualityDept and DispatchProcess started.

    Returns the JobDriver.
    """

    def _make(qc_quantity=600, banked=0, po_quantity=1000):
        snapshot = plan_job(po_quantity=po_quantity)
        driver = driver_for(snapshot.nrc_job_no)
        driver.run_through_quality(qc_quantity=qc_quantity)
        if banked:
            orchestrator.add_finished_goods(snapshot.nrc_job_no, banked, ADMIN)
        driver.transition(DISPATCH_STEP, StepStatus.START)
        return driver

    return _make


class TestScenarioA:
    """PO 1000, QC 600, one dispatch of 1000."""

    def test_gap_drawn_from_finished_goods(self, job_at_dispatch, orchestrator):
        driver = job_at_dispatch(qc_quantity=600, banked=400)

        result = driver.transition(
            DISPATCH_STEP, StepStatus.STOP, dispatch=DispatchRequest(dispatch_quantity=1000)
        )

        assert result.outcome is TransitionOutcome.APPLIED
        assert result.dispatch.actual_quantity == 1000
        assert result.dispatch.finished_goods_consumed == 400
        assert result.dispatch.shortfall == 0
        assert result.dispatch.detail_status is DetailStatus.ACCEPT
        assert orchestrator.available_finished_goods(driver.nrc_job_no) == 0

    def test_without_stock_only_quality_passed_goes_out(self, job_at_dispatch, orchestrator):
        driver = job_at_dispatch(qc_quantity=600)

        result = driver.transition(
            DISPATCH_STEP, StepStatus.STOP, dispatch=DispatchRequest(dispatch_quantity=1000)
        )

        assert result.dispatch.actual_quantity == 600
        assert result.dispatch.detail_status is DetailStatus.IN_PROGRESS
        assert not result.completion.completed
        assert result.completion.reason == "dispatch_not_accepted"
        assert orchestrator.available_finished_goods(driver.nrc_job_no) == 400

    def test_follow_up_dispatch_on_stopped_step_completes(self, job_at_dispatch, orchestrator):
        """Re-issuing stop with a quantity still reconciles."""
        driver = job_at_dispatch(qc_quantity=1000)
        driver.transition(
            DISPATCH_STEP, StepStatus.STOP, dispatch=DispatchRequest(dispatch_quantity=600)
        )

        result = driver.transition(
            DISPATCH_STEP, StepStatus.STOP, dispatch=DispatchRequest(dispatch_quantity=400)
        )

        assert result.outcome is TransitionOutcome.NO_OP
        assert result.dispatch.new_total == 1000
        assert result.completion.completed


class TestScenarioB:
    """Over-request of 1500 against PO 1000."""

    def test_excess_banked_not_dispatched(self, session, job_at_dispatch, orchestrator):
        driver = job_at_dispatch(qc_quantity=600, banked=400)

        result = driver.transition(
            DISPATCH_STEP, StepStatus.STOP, dispatch=DispatchRequest(dispatch_quantity=1500)
        )

        assert result.dispatch.actual_quantity == 1000
        assert result.dispatch.excess_quantity == 500
        excess = session.get(FinishedGoodsEntry, result.dispatch.excess_entry_id)
        assert excess.status == LedgerEntryStatus.AVAILABLE.value
        assert excess.over_dispatched_quantity == 500
        assert orchestrator.available_finished_goods(driver.nrc_job_no) == 500
        orchestrator.verify_ledger(driver.nrc_job_no)


class TestScenarioC:
    """Flute lamination waits for corrugation to be accepted."""

    def test_corrugation_in_progress_blocks(self, plan_job, driver_for, orchestrator):
        snapshot = plan_job()
        driver = driver_for(snapshot.nrc_job_no)
        driver.finish_manual_step(1)
        driver.finish_machine_step(2, StepName.PRINTING_DETAILS)
        driver.transition(3, StepStatus.START, machine_code="CR-01")
        orchestrator.update_step_detail(
            snapshot.nrc_job_no, 3, ADMIN, status=DetailStatus.IN_PROGRESS, quantity=400
        )

        with pytest.raises(DependencyNotSatisfiedError) as exc_info:
            driver.transition(4, StepStatus.START, machine_code="FL-01")

        assert exc_info.value.unmet == ("Corrugation (must be accepted)",)
        planning = orchestrator.get_planning(snapshot.nrc_job_no)
        assert planning.step(4).status is StepStatus.PLANNED
        visible = orchestrator.visible_machines(snapshot.nrc_job_no, 4)
        assert not any(v.is_owner for v in visible)


class TestScenarioD:
    """Two Auto Pund machines on one Punching step of a high-demand job."""

    def test_second_machine_rejected(self, plan_job, driver_for):
        snapshot = plan_job([(1, StepName.PUNCHING)], job_demand=JobDemand.HIGH)
        driver = driver_for(snapshot.nrc_job_no)
        first = Actor(user_id="op-a", roles=frozenset({"operator"}))
        second = Actor(user_id="op-b", roles=frozenset({"operator"}))

        result = driver.transition(1, StepStatus.START, actor=first, machine_code="AP-01")

        with pytest.raises(MachineAlreadyClaimedError) as exc_info:
            driver.transition(1, StepStatus.START, actor=second, machine_code="AP-02")

        assert result.outcome is TransitionOutcome.APPLIED
        assert exc_info.value.owner_machine_id == str(driver.machine_id("AP-01"))

    def test_owner_repeat_start_is_no_op(self, plan_job, driver_for):
        snapshot = plan_job([(1, StepName.PUNCHING)], job_demand=JobDemand.HIGH)
        driver = driver_for(snapshot.nrc_job_no)
        driver.transition(1, StepStatus.START, machine_code="AP-01")

        again = driver.transition(1, StepStatus.START, machine_code="AP-01")

        assert again.outcome is TransitionOutcome.NO_OP


class TestScenarioE:
    """Completion archives exactly once."""

    def test_archived_once(self, session, job_at_dispatch, orchestrator):
        driver = job_at_dispatch(qc_quantity=1000)

        result = driver.transition(
            DISPATCH_STEP, StepStatus.STOP, dispatch=DispatchRequest(dispatch_quantity=1000)
        )

        assert result.completion.completed
        again = orchestrator.check_completion(driver.nrc_job_no, ADMIN)
        assert not again.completed
        assert again.reason == "planning_not_found"
        archived = session.execute(
            select(func.count()).select_from(CompletedJob).where(
                CompletedJob.nrc_job_no == driver.nrc_job_no
            )
        ).scalar_one()
        assert archived == 1
        with pytest.raises(PlanningNotFoundError):
            orchestrator.get_planning(driver.nrc_job_no)

    def test_dispatch_cannot_be_accepted_by_hand(self, plan_job, driver_for, orchestrator):
        snapshot = plan_job([(1, StepName.QUALITY_DEPT), (2, StepName.DISPATCH_PROCESS)])
        driver = driver_for(snapshot.nrc_job_no)
        driver.finish_quality(1, 1000)
        driver.transition(2, StepStatus.START)

        with pytest.raises(InvalidTransitionError):
            orchestrator.update_step_detail(
                snapshot.nrc_job_no, 2, DISPATCHER, status=DetailStatus.ACCEPT
            )
        result = driver.transition(2, StepStatus.STOP, actor=DISPATCHER)

        assert not result.completion.completed
        assert result.completion.reason == "dispatch_not_accepted"
        detail = orchestrator.get_planning(snapshot.nrc_job_no).step(2).detail
        assert detail is None or detail.status is not DetailStatus.ACCEPT

    def test_not_archived_below_purchase_order(self, plan_job, driver_for, orchestrator):
        snapshot = plan_job([(1, StepName.QUALITY_DEPT), (2, StepName.DISPATCH_PROCESS)])
        driver = driver_for(snapshot.nrc_job_no)
        driver.finish_quality(1, 1000)
        driver.transition(2, StepStatus.START)

        result = driver.transition(
            2, StepStatus.STOP, actor=DISPATCHER, dispatch=DispatchRequest(dispatch_quantity=400)
        )

        assert result.dispatch.new_total == 400
        assert result.completion.reason == "dispatch_not_accepted"
        planning = orchestrator.get_planning(snapshot.nrc_job_no)
        assert planning.step(2).detail.status is DetailStatus.IN_PROGRESS
        assert not orchestrator.check_completion(snapshot.nrc_job_no, ADMIN).completed
