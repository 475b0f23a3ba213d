"""
Concurrent claim of one step by two machines.

Two operators on AP-01 and AP-02 start the same Punching step of a
high-demand job at the same moment.  Exactly one machine owns the step;
the other request fails with MachineAlreadyClaimedError and leaves no
trace.

Runs against committed data: on SQLite the writers serialize on the file
lock, on PostgreSQL on the step row lock and the compare-and-set.
"""

from concurrent.futures import ThreadPoolExecutor
from threading import Barrier

import pytest
from sqlalchemy import select

from production_kernel.domain.dtos import Actor, TransitionOutcome
from production_kernel.domain.step_types import ClaimStatus, JobDemand, StepName, StepStatus
from production_kernel.exceptions import MachineAlreadyClaimedError
from production_kernel.models.machine_claim import MachineClaim
from production_services.locks import KeyedLockRegistry
from production_services.workflow_orchestrator import TransitionRequest

pytestmark = pytest.mark.concurrency

ADMIN = Actor(user_id="admin-1", roles=frozenset({"admin"}))
OPERATORS = {
    "AP-01": Actor(user_id="op-a", roles=frozenset({"operator"})),
    "AP-02": Actor(user_id="op-b", roles=frozenset({"operator"})),
}


def race_to_start(committed_orchestrator, nrc_job_no, machine_ids, registry_for):
    barrier = Barrier(len(OPERATORS))

    def start(code):
        orchestrator = committed_orchestrator(registry_for(code))
        barrier.wait(timeout=10)
        try:
            return code, orchestrator.apply_transition(
                TransitionRequest(
                    nrc_job_no=nrc_job_no,
                    step_no=1,
                    status=StepStatus.START,
                    actor=OPERATORS[code],
                    machine_id=machine_ids[code],
                )
            )
        except MachineAlreadyClaimedError as exc:
            return code, exc

    with ThreadPoolExecutor(max_workers=len(OPERATORS)) as pool:
        return dict(pool.map(start, OPERATORS))


@pytest.mark.parametrize("shared_lock", [True, False], ids=["one-process", "two-processes"])
def test_exactly_one_machine_wins(
    shared_lock, committed_machines, committed_job, committed_orchestrator, session_factory
):
    nrc_job_no, po_id = committed_job(job_demand=JobDemand.HIGH)
    committed_orchestrator().create_planning(
        nrc_job_no, [(1, StepName.PUNCHING)], ADMIN, purchase_order_id=po_id
    )

    shared = KeyedLockRegistry()
    outcomes = race_to_start(
        committed_orchestrator,
        nrc_job_no,
        committed_machines,
        lambda code: shared if shared_lock else KeyedLockRegistry(),
    )

    winners = [c for c, r in outcomes.items() if not isinstance(r, Exception)]
    losers = [c for c, r in outcomes.items() if isinstance(r, MachineAlreadyClaimedError)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert outcomes[winners[0]].outcome is TransitionOutcome.APPLIED
    assert outcomes[losers[0]].owner_machine_id == str(committed_machines[winners[0]])

    check = session_factory()
    owners = check.execute(
        select(MachineClaim).where(
            MachineClaim.nrc_job_no == nrc_job_no,
            MachineClaim.started_by_machine_id.is_not(None),
        )
    ).scalars().all()
    assert len(owners) == 1
    assert owners[0].machine_id == committed_machines[winners[0]]
    assert owners[0].status == ClaimStatus.IN_PROGRESS.value


def test_loser_sees_only_the_owner(committed_machines, committed_job, committed_orchestrator):
    nrc_job_no, po_id = committed_job(job_demand=JobDemand.HIGH)
    committed_orchestrator().create_planning(
        nrc_job_no, [(1, StepName.PUNCHING)], ADMIN, purchase_order_id=po_id
    )
    outcomes = race_to_start(
        committed_orchestrator, nrc_job_no, committed_machines, lambda code: KeyedLockRegistry()
    )
    winner = next(c for c, r in outcomes.items() if not isinstance(r, Exception))

    visible = committed_orchestrator().visible_machines(
        nrc_job_no, 1, requesting_machine_id=committed_machines["AP-02"]
    )

    assert [v.machine_code for v in visible] == [winner]
