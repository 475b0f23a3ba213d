"""
Workflow Orchestrator -- composition root for the production workflow.

Responsibility:
    Entry point for every workflow operation coming from the HTTP layer.
    For each request it loads the selected planning and the machine
    catalog, gates the caller, runs the pure engines (transition,
    dependency, claim, reconciliation), persists through the kernel
    services, runs the auto-completion check, commits, and reports the
    change to the activity sink.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Owns the transaction boundary.  Kernel services only flush.

Invariants enforced:
    - One transaction per operation when ``auto_commit`` is True: the claim
      write, the step compare-and-set, dispatch reconciliation and archival
      commit together or not at all.
    - Every mutating operation runs under the per-job in-process lock, held
      across the commit.
    - A lost compare-and-set is retried once against fresh state; a second
      loss propagates ConcurrentModificationError.
    - The activity sink is notified only after a successful commit and its
      failures never undo the change.

Failure modes:
    - Domain errors from engines and services propagate unchanged after
      rollback: InvalidTransitionError, DependencyNotSatisfiedError,
      MachineAlreadyClaimedError, AccessDeniedError, ...
    - Unexpected exceptions roll back and are logged at ERROR.

Audit relevance:
    Every operation runs inside ``LogContext.bind`` with a fresh
    correlation id, so service and engine log records of one request can be
    joined.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from production_config import (
    WorkflowConfig,
    build_access_policy,
    build_machine_type_rules,
    get_active_config,
)
from production_engines.claims import check_claim, find_owner
from production_engines.dependency import DependencyPhase, check_dependencies
from production_engines.transitions import TransitionDecision, evaluate_transition
from production_kernel.domain.clock import Clock, SystemClock
from production_kernel.domain.dispatch import DispatchRequest, coerce_quantity
from production_kernel.domain.dtos import (
    Actor,
    ClaimSnapshot,
    CompletionResult,
    DetailSnapshot,
    DispatchOutcome,
    FinishedGoodsSummary,
    HeldMachine,
    MachineCatalog,
    PlanningSnapshot,
    StepRecord,
    TransitionOutcome,
    TransitionResult,
    VisibleMachine,
)
from production_kernel.domain.policies import AccessPolicy, MachineTypeRules
from production_kernel.domain.step_types import DetailStatus, JobDemand, StepName, StepStatus
from production_kernel.exceptions import (
    AccessDeniedError,
    ConcurrentModificationError,
    DependencyNotSatisfiedError,
    InvalidStepDetailError,
    InvalidTransitionError,
    MachineNotEligibleError,
    ProductionWorkflowError,
)
from production_kernel.logging_config import LogContext, get_logger
from production_kernel.models.planning import JobPlanning, JobStep
from production_kernel.selectors.machine_selector import MachineSelector, claim_snapshot
from production_kernel.selectors.planning_selector import PlanningSelector, detail_snapshot
from production_kernel.services.dispatch_service import DispatchService
from production_kernel.services.finished_goods_service import FinishedGoodsService
from production_kernel.services.job_completion_service import JobCompletionService
from production_kernel.services.machine_allocation_service import MachineAllocationService
from production_kernel.services.planning_service import PlanningService
from production_kernel.services.step_detail_service import StepDetailService
from production_kernel.services.step_state_service import StepStateService, step_record
from production_services.activity_log import (
    ActivityEvent,
    ActivitySink,
    LoggingActivitySink,
    notify,
)
from production_services.locks import DEFAULT_LOCK_REGISTRY, KeyedLockRegistry

logger = get_logger("services.workflow_orchestrator")

T = TypeVar("T")

_MAX_ATTEMPTS = 2


@dataclass(frozen=True)
class TransitionRequest:
    """
    A requested status change for one step.

    ``machine_id`` is required to start a machine-backed step.  ``dispatch``
    carries the dispatch form for a DispatchProcess stop.
    """

    nrc_job_no: str
    step_no: int
    status: StepStatus
    actor: Actor
    machine_id: UUID | None = None
    dispatch: DispatchRequest | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "status", StepStatus(self.status))

    @classmethod
    def from_payload(
        cls,
        nrc_job_no: str,
        step_no: int,
        payload: Mapping[str, Any],
        actor: Actor,
    ) -> TransitionRequest:
        """
        Build from a JSON request body.

        Reads ``status``; the machine from ``machineId`` or the first entry of
        ``machineDetails``; dispatch form fields when a dispatch quantity is
        present.
        """
        machine_id = payload.get("machineId")
        details = payload.get("machineDetails") or []
        if machine_id is None and details:
            machine_id = details[0].get("machineId") or details[0].get("id")

        dispatch = None
        if payload.get("quantity") is not None or payload.get("dispatchedQty") is not None:
            dispatch = DispatchRequest.from_form(payload)

        return cls(
            nrc_job_no=nrc_job_no,
            step_no=int(step_no),
            status=StepStatus(payload["status"]),
            actor=actor,
            machine_id=UUID(str(machine_id)) if machine_id else None,
            dispatch=dispatch,
        )


def _form_quantity(form: Mapping[str, Any], *keys: str) -> int | None:
    for key in keys:
        value = form.get(key)
        if value not in (None, ""):
            return coerce_quantity(key, value, InvalidStepDetailError)
    return None


class WorkflowOrchestrator:
    """
    Runs workflow operations end to end.

    By default every operation commits on success and rolls back on
    failure.  Set ``auto_commit=False`` to leave transaction control to the
    caller; concurrent-modification retries are then disabled.
    """

    def __init__(
        self,
        session: Session,
        *,
        access_policy: AccessPolicy,
        machine_rules: MachineTypeRules,
        clock: Clock | None = None,
        lock_registry: KeyedLockRegistry | None = None,
        activity_sink: ActivitySink | None = None,
        catalog: MachineCatalog | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._policy = access_policy
        self._rules = machine_rules
        self._locks = lock_registry or DEFAULT_LOCK_REGISTRY
        self._sink = activity_sink or LoggingActivitySink()
        self._catalog = catalog
        self._auto_commit = auto_commit

        self._plannings = PlanningSelector(session)
        self._machines = MachineSelector(session)
        self._planning_service = PlanningService(session, self._clock)
        self._steps = StepStateService(session, self._clock)
        self._details = StepDetailService(session, self._clock)
        self._allocation = MachineAllocationService(session, self._clock)
        self._finished_goods = FinishedGoodsService(session, self._clock)
        self._dispatch = DispatchService(
            session, self._clock, finished_goods=self._finished_goods, details=self._details
        )
        self._completion = JobCompletionService(session, self._clock)

    @classmethod
    def from_config(
        cls,
        session: Session,
        config: WorkflowConfig | None = None,
        **kwargs: Any,
    ) -> WorkflowOrchestrator:
        """Build with policies from ``config`` (default: the active config)."""
        config = config or get_active_config()
        return cls(
            session,
            access_policy=build_access_policy(config),
            machine_rules=build_machine_type_rules(config),
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Transaction handling
    # ------------------------------------------------------------------

    def _run(
        self,
        operation: str,
        nrc_job_no: str | None,
        actor: Actor | None,
        work: Callable[[], T],
        *,
        step_no: int | None = None,
        machine_id: UUID | None = None,
        exclusive: bool = True,
    ) -> T:
        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=actor.user_id if actor else None,
            nrc_job_no=nrc_job_no,
            step_no=step_no,
            machine_id=machine_id,
        ):
            t0 = time.monotonic()
            if exclusive and nrc_job_no is not None:
                with self._locks.hold(nrc_job_no):
                    result = self._attempt(operation, work)
            else:
                result = self._attempt(operation, work)
            logger.info(
                "workflow_operation_completed",
                extra={
                    "operation": operation,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            return result

    def _attempt(self, operation: str, work: Callable[[], T]) -> T:
        attempt = 1
        while True:
            try:
                result = work()
                if self._auto_commit:
                    self._session.commit()
                return result
            except ConcurrentModificationError as exc:
                if self._auto_commit:
                    self._session.rollback()
                if not self._auto_commit or attempt >= _MAX_ATTEMPTS:
                    logger.warning(
                        "workflow_operation_conflict",
                        extra={"operation": operation, "attempt": attempt, "error_code": exc.code},
                    )
                    raise
                logger.info(
                    "workflow_operation_retry",
                    extra={"operation": operation, "attempt": attempt, "entity_id": exc.entity_id},
                )
                attempt += 1
            except ProductionWorkflowError as exc:
                if self._auto_commit:
                    self._session.rollback()
                logger.warning(
                    "workflow_operation_rejected",
                    extra={"operation": operation, "error_code": exc.code, "error": str(exc)},
                )
                raise
            except Exception:
                if self._auto_commit:
                    self._session.rollback()
                logger.error("workflow_operation_failed", extra={"operation": operation}, exc_info=True)
                raise

    def _report(
        self,
        action: str,
        nrc_job_no: str,
        actor: Actor,
        *,
        step_no: int | None = None,
        step_name: StepName | None = None,
        **details: Any,
    ) -> None:
        notify(
            self._sink,
            ActivityEvent(
                action=action,
                nrc_job_no=nrc_job_no,
                actor_id=actor.user_id,
                occurred_at=self._clock.now(),
                step_no=step_no,
                step_name=step_name.value if step_name else None,
                details=details,
            ),
        )

    # ------------------------------------------------------------------
    # Shared request steps
    # ------------------------------------------------------------------

    def _catalog_snapshot(self) -> MachineCatalog:
        return self._catalog if self._catalog is not None else self._machines.catalog()

    def _load(self, nrc_job_no: str, step_no: int) -> tuple[JobPlanning, JobStep, PlanningSnapshot]:
        planning = self._plannings.require_current(nrc_job_no)
        step = self._steps.get_step(planning, step_no)
        return planning, step, self._plannings.snapshot(planning)

    def _authorize_step(
        self,
        actor: Actor,
        snapshot: PlanningSnapshot,
        step_name: StepName,
        machine_id: UUID | None,
        action: str,
    ) -> None:
        """
        Role and machine-assignment gating.

        Privileged callers and high-demand jobs bypass both checks; they
        never bypass the state machine, dependencies or claim exclusivity.
        """
        if self._policy.is_privileged(actor) or snapshot.is_high_demand:
            return
        if not self._policy.may_work_step(actor, step_name):
            raise AccessDeniedError(
                actor.user_id, f"{action} {step_name.value}", "role does not permit this step"
            )
        if (
            step_name.is_machine_backed
            and machine_id is not None
            and machine_id not in actor.machine_ids
        ):
            raise AccessDeniedError(
                actor.user_id,
                f"{action} {step_name.value}",
                f"not assigned to machine {machine_id}",
            )

    def _require_privileged(self, actor: Actor, action: str) -> None:
        if not self._policy.is_privileged(actor):
            raise AccessDeniedError(actor.user_id, action, "privileged role required")

    def _require_dependencies(
        self,
        snapshot: PlanningSnapshot,
        step_no: int,
        phase: DependencyPhase,
    ) -> None:
        check = check_dependencies(steps=snapshot.steps, target_step_no=step_no, phase=phase)
        if not check.satisfied:
            logger.warning(
                "dependency_check_failed",
                extra={
                    "step_name": check.step_name.value,
                    "phase": phase.value,
                    "rule": check.rule.value,
                    "unmet": list(check.unmet),
                },
            )
            raise DependencyNotSatisfiedError(check.step_name.value, check.unmet)

    def _owner_machine(self, step: JobStep) -> UUID | None:
        owner = find_owner(self._machines.claims_for_step(step.id))
        return owner.machine_id if owner else None

    def _after_stop(self, nrc_job_no: str) -> CompletionResult:
        return self._completion.check_and_complete(nrc_job_no)

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def create_planning(
        self,
        nrc_job_no: str,
        steps: Sequence[tuple[int, StepName | str]],
        actor: Actor,
        *,
        job_demand: JobDemand | None = None,
        purchase_order_id: UUID | None = None,
        finished_goods_qty: int | None = None,
    ) -> PlanningSnapshot:
        """Create the job's single live planning.  Privileged only."""

        def work() -> PlanningSnapshot:
            self._require_privileged(actor, "create planning")
            return self._planning_service.create_planning(
                nrc_job_no,
                steps,
                catalog=self._catalog_snapshot(),
                rules=self._rules,
                job_demand=job_demand,
                purchase_order_id=purchase_order_id,
                finished_goods_qty=finished_goods_qty,
            )

        snapshot = self._run("create_planning", nrc_job_no, actor, work)
        self._report(
            "planning_created",
            nrc_job_no,
            actor,
            job_planning_id=str(snapshot.job_planning_id),
            steps=[s.step_name.value for s in snapshot.steps],
        )
        return snapshot

    def get_planning(self, nrc_job_no: str) -> PlanningSnapshot:
        return self._run(
            "get_planning",
            nrc_job_no,
            None,
            lambda: self._plannings.get_snapshot(nrc_job_no),
            exclusive=False,
        )

    # ------------------------------------------------------------------
    # Step transitions
    # ------------------------------------------------------------------

    def apply_transition(self, request: TransitionRequest) -> TransitionResult:
        """
        Apply a requested status change to a step.

        Order: gate -> state machine -> dependencies -> claim -> step
        compare-and-set -> dispatch reconciliation -> completion check.

        Returns:
            TransitionResult; ``outcome`` is APPLIED, NO_OP (status already
            current) or IGNORED (generic stop of a machine-backed step).
        """
        result = self._run(
            "apply_transition",
            request.nrc_job_no,
            request.actor,
            lambda: self._apply_transition(request),
            step_no=request.step_no,
            machine_id=request.machine_id,
        )
        if result.outcome is not TransitionOutcome.IGNORED:
            self._report(
                f"step_{request.status.value}",
                request.nrc_job_no,
                request.actor,
                step_no=request.step_no,
                step_name=result.step.step_name,
                outcome=result.outcome.value,
                previous_status=result.previous_status.value,
                dispatched=result.dispatch.actual_quantity if result.dispatch else None,
                completed=bool(result.completion and result.completion.completed),
            )
        return result

    def _apply_transition(self, request: TransitionRequest) -> TransitionResult:
        actor = request.actor
        planning, step, snapshot = self._load(request.nrc_job_no, request.step_no)
        step_name = StepName.parse(step.step_name)
        current = StepStatus(step.status)
        catalog = self._catalog_snapshot()

        self._authorize_step(
            actor,
            snapshot,
            step_name,
            request.machine_id or self._owner_machine(step),
            action=request.status.value,
        )

        decision = evaluate_transition(
            step_name=step_name,
            current=current,
            requested=request.status,
            privileged=self._policy.is_privileged(actor),
        )

        if decision.outcome is TransitionOutcome.IGNORED:
            logger.info(
                "step_stop_ignored_machine_backed",
                extra={"step_name": step_name.value, "current_status": current.value},
            )
            return TransitionResult(
                outcome=decision.outcome, previous_status=current, step=step_record(step)
            )

        if decision.outcome is TransitionOutcome.NO_OP:
            return self._repeat_transition(planning, step, step_name, request, catalog)

        if request.status in (StepStatus.START, StepStatus.STOP):
            phase = DependencyPhase.START if request.status is StepStatus.START else DependencyPhase.STOP
            self._require_dependencies(snapshot, step.step_no, phase)

        step = self._steps.lock_step(step.id)
        if StepStatus(step.status) is not current:
            raise ConcurrentModificationError("JobStep", str(step.id), current.value)

        if step_name.is_machine_backed and request.status is StepStatus.START:
            self._claim_for_start(step, step_name, current, request, catalog)

        record = self._steps.apply(step, decision, actor.user_id)
        return self._finish_stop(planning, step, step_name, decision, record, request.dispatch, actor)

    def _claim_for_start(
        self,
        step: JobStep,
        step_name: StepName,
        current: StepStatus,
        request: TransitionRequest,
        catalog: MachineCatalog,
    ) -> None:
        if request.machine_id is None:
            if current is StepStatus.MAJOR_HOLD:
                # Resume keeps the existing owner.
                return
            raise MachineNotEligibleError(step_name.value, "<missing>", None)
        self._allocation.claim_for_start(
            step,
            machine_id=request.machine_id,
            operator_id=request.actor.user_id,
            catalog=catalog,
            rules=self._rules,
        )

    def _repeat_transition(
        self,
        planning: JobPlanning,
        step: JobStep,
        step_name: StepName,
        request: TransitionRequest,
        catalog: MachineCatalog,
    ) -> TransitionResult:
        """Same status re-issued: no state change, but exclusivity and dispatch still apply."""
        current = StepStatus(step.status)
        if (
            request.status is StepStatus.START
            and step_name.is_machine_backed
            and request.machine_id is not None
        ):
            check_claim(
                step_id=step.id,
                step_name=step_name,
                machine_id=request.machine_id,
                catalog=catalog,
                rules=self._rules,
                claims=self._machines.claims_for_step(step.id),
            )

        record = step_record(step)
        dispatch = None
        completion = None
        if (
            step_name.requires_dispatch_reconciliation
            and request.status is StepStatus.STOP
            and request.dispatch is not None
            and request.dispatch.has_quantity
        ):
            dispatch = self._dispatch.reconcile(planning, step, request.dispatch, request.actor.user_id)
            completion = self._after_stop(planning.nrc_job_no)

        return TransitionResult(
            outcome=TransitionOutcome.NO_OP,
            previous_status=current,
            step=record,
            dispatch=dispatch,
            completion=completion,
        )

    def _finish_stop(
        self,
        planning: JobPlanning,
        step: JobStep,
        step_name: StepName,
        decision: TransitionDecision,
        record: StepRecord,
        dispatch_request: DispatchRequest | None,
        actor: Actor,
    ) -> TransitionResult:
        dispatch: DispatchOutcome | None = None
        completion: CompletionResult | None = None
        if decision.to_status is StepStatus.STOP:
            if (
                step_name.requires_dispatch_reconciliation
                and dispatch_request is not None
                and dispatch_request.has_quantity
            ):
                dispatch = self._dispatch.reconcile(planning, step, dispatch_request, actor.user_id)
            completion = self._after_stop(planning.nrc_job_no)
        return TransitionResult(
            outcome=decision.outcome,
            previous_status=decision.from_status,
            step=record,
            dispatch=dispatch,
            completion=completion,
        )

    # ------------------------------------------------------------------
    # Step details
    # ------------------------------------------------------------------

    def update_step_detail(
        self,
        nrc_job_no: str,
        step_no: int,
        actor: Actor,
        *,
        status: DetailStatus | None = None,
        quantity: int | None = None,
        rejected_quantity: int | None = None,
        remarks: str | None = None,
        fields: dict[str, Any] | None = None,
    ) -> DetailSnapshot:
        """Upsert a step's detail record."""

        def work() -> DetailSnapshot:
            _, step, snapshot = self._load(nrc_job_no, step_no)
            step_name = StepName.parse(step.step_name)
            self._authorize_step(actor, snapshot, step_name, None, action="update detail of")
            record = self._details.update(
                step,
                operator_id=actor.user_id,
                status=status,
                quantity=quantity,
                rejected_quantity=rejected_quantity,
                remarks=remarks,
                fields=fields,
            )
            return detail_snapshot(record)

        detail = self._run("update_step_detail", nrc_job_no, actor, work, step_no=step_no)
        self._report(
            "step_detail_updated",
            nrc_job_no,
            actor,
            step_no=step_no,
            detail_status=detail.status.value,
            quantity=detail.quantity,
        )
        return detail

    def sign_off_quality(
        self,
        nrc_job_no: str,
        step_no: int,
        actor: Actor,
        pass_quantity: int,
        rejected_quantity: int,
        remarks: str | None = None,
    ) -> DetailSnapshot:
        """Record the QC sign-off.  Quality sign-off roles or privileged only."""

        def work() -> DetailSnapshot:
            if not self._policy.may_sign_off_quality(actor):
                raise AccessDeniedError(actor.user_id, "sign off quality", "quality sign-off role required")
            _, step, _ = self._load(nrc_job_no, step_no)
            record = self._details.sign_off_quality(
                step,
                signed_by=actor.user_id,
                pass_quantity=pass_quantity,
                rejected_quantity=rejected_quantity,
                remarks=remarks,
            )
            return detail_snapshot(record)

        detail = self._run("sign_off_quality", nrc_job_no, actor, work, step_no=step_no)
        self._report(
            "quality_signed_off",
            nrc_job_no,
            actor,
            step_no=step_no,
            step_name=StepName.QUALITY_DEPT,
            pass_quantity=pass_quantity,
            rejected_quantity=rejected_quantity,
        )
        return detail

    # ------------------------------------------------------------------
    # Machine work
    # ------------------------------------------------------------------

    def complete_machine_work(
        self,
        nrc_job_no: str,
        step_no: int,
        machine_id: UUID,
        actor: Actor,
        form_data: Mapping[str, Any] | None = None,
    ) -> TransitionResult:
        """
        The owning machine finishes the step.

        Closes the claim, accepts the detail record with the form's
        quantities, stops the step and runs the completion check.
        """
        result = self._run(
            "complete_machine_work",
            nrc_job_no,
            actor,
            lambda: self._complete_machine_work(nrc_job_no, step_no, machine_id, actor, form_data or {}),
            step_no=step_no,
            machine_id=machine_id,
        )
        self._report(
            "machine_work_completed",
            nrc_job_no,
            actor,
            step_no=step_no,
            step_name=result.step.step_name,
            machine_id=str(machine_id),
            completed=bool(result.completion and result.completion.completed),
        )
        return result

    def _complete_machine_work(
        self,
        nrc_job_no: str,
        step_no: int,
        machine_id: UUID,
        actor: Actor,
        form_data: Mapping[str, Any],
    ) -> TransitionResult:
        planning, step, snapshot = self._load(nrc_job_no, step_no)
        step_name = StepName.parse(step.step_name)
        current = StepStatus(step.status)
        self._authorize_step(actor, snapshot, step_name, machine_id, action="complete")

        decision = evaluate_transition(
            step_name=step_name,
            current=current,
            requested=StepStatus.STOP,
            privileged=self._policy.is_privileged(actor),
            machine_completion=True,
        )
        if decision.is_applied:
            self._require_dependencies(snapshot, step.step_no, DependencyPhase.STOP)

        quantity = _form_quantity(form_data, "quantity", "okQuantity")
        rejected_quantity = _form_quantity(form_data, "rejectedQuantity", "wastage")

        self._allocation.complete(step, machine_id, form_data=dict(form_data))
        self._details.update(
            step,
            operator_id=actor.user_id,
            status=DetailStatus.ACCEPT,
            quantity=quantity,
            rejected_quantity=rejected_quantity,
            remarks=form_data.get("remarks"),
            fields={
                k: v for k, v in form_data.items()
                if k not in ("quantity", "okQuantity", "rejectedQuantity", "wastage", "remarks")
            },
        )

        if not decision.is_applied:
            return TransitionResult(
                outcome=decision.outcome, previous_status=current, step=step_record(step)
            )

        step = self._steps.lock_step(step.id)
        if StepStatus(step.status) is not current:
            raise ConcurrentModificationError("JobStep", str(step.id), current.value)
        record = self._steps.apply(step, decision, actor.user_id)
        return self._finish_stop(planning, step, step_name, decision, record, None, actor)

    def hold_machine_work(
        self,
        nrc_job_no: str,
        step_no: int,
        machine_id: UUID,
        actor: Actor,
        remark: str | None = None,
    ) -> ClaimSnapshot:
        """Pause the owning machine's work on the step (claim in_progress -> hold)."""

        def work() -> ClaimSnapshot:
            _, step, snapshot = self._load(nrc_job_no, step_no)
            self._authorize_step(actor, snapshot, StepName.parse(step.step_name), machine_id, "hold")
            return claim_snapshot(self._allocation.hold(step, machine_id, remark=remark))

        claim = self._run(
            "hold_machine_work", nrc_job_no, actor, work, step_no=step_no, machine_id=machine_id
        )
        self._report(
            "machine_work_held", nrc_job_no, actor, step_no=step_no,
            machine_id=str(machine_id), remark=remark,
        )
        return claim

    def resume_machine_work(
        self,
        nrc_job_no: str,
        step_no: int,
        machine_id: UUID,
        actor: Actor,
    ) -> ClaimSnapshot:
        """Continue held work (claim hold -> in_progress)."""

        def work() -> ClaimSnapshot:
            _, step, snapshot = self._load(nrc_job_no, step_no)
            self._authorize_step(actor, snapshot, StepName.parse(step.step_name), machine_id, "resume")
            return claim_snapshot(self._allocation.resume(step, machine_id))

        claim = self._run(
            "resume_machine_work", nrc_job_no, actor, work, step_no=step_no, machine_id=machine_id
        )
        self._report(
            "machine_work_resumed", nrc_job_no, actor, step_no=step_no, machine_id=str(machine_id)
        )
        return claim

    def release_claim(self, nrc_job_no: str, step_no: int, actor: Actor) -> StepRecord:
        """
        Privileged release of a step's owning machine.

        The claim returns to ``available`` with no owner and the step goes
        back to ``planned`` with its start stamps cleared, so another
        machine can claim it.
        """

        def work() -> StepRecord:
            self._require_privileged(actor, "release claim")
            _, step, _ = self._load(nrc_job_no, step_no)
            current = StepStatus(step.status)
            if current is StepStatus.STOP:
                raise InvalidTransitionError(step.step_name, current.value, StepStatus.PLANNED.value)
            self._allocation.release(step, actor.user_id)
            if current is StepStatus.PLANNED:
                return step_record(step)
            return self._steps.revert_to_planned(step, actor.user_id)

        record = self._run("release_claim", nrc_job_no, actor, work, step_no=step_no)
        self._report(
            "machine_claim_released", nrc_job_no, actor, step_no=step_no, step_name=record.step_name
        )
        return record

    def visible_machines(
        self,
        nrc_job_no: str,
        step_no: int,
        requesting_machine_id: UUID | None = None,
    ) -> tuple[VisibleMachine, ...]:
        """Machine entries shown for a step; only the owner once claimed."""

        def work() -> tuple[VisibleMachine, ...]:
            _, step, _ = self._load(nrc_job_no, step_no)
            return self._allocation.visible_machines(step, self._catalog_snapshot(), self._rules)

        return self._run(
            "visible_machines",
            nrc_job_no,
            None,
            work,
            step_no=step_no,
            machine_id=requesting_machine_id,
            exclusive=False,
        )

    def held_machines(self, actor: Actor) -> tuple[HeldMachine, ...]:
        """Every held claim.  Privileged and held-machine viewer roles only."""

        def work() -> tuple[HeldMachine, ...]:
            if not self._policy.may_view_held_machines(actor):
                raise AccessDeniedError(actor.user_id, "view held machines", "role not permitted")
            return self._allocation.held_machines()

        return self._run("held_machines", None, actor, work, exclusive=False)

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def check_completion(self, nrc_job_no: str, actor: Actor) -> CompletionResult:
        """Archive the job now if it is finished; a no-op once archived."""
        result = self._run(
            "check_completion",
            nrc_job_no,
            actor,
            lambda: self._completion.check_and_complete(nrc_job_no, completed_by=actor.user_id),
        )
        if result.completed:
            self._report(
                "job_completed", nrc_job_no, actor,
                completed_job_id=str(result.completed_job_id),
            )
        return result

    # ------------------------------------------------------------------
    # Finished goods
    # ------------------------------------------------------------------

    def available_finished_goods(self, nrc_job_no: str) -> int:
        return self._run(
            "available_finished_goods",
            nrc_job_no,
            None,
            lambda: self._finished_goods.available_quantity(nrc_job_no),
            exclusive=False,
        )

    def finished_goods_summary(self, nrc_job_no: str) -> FinishedGoodsSummary:
        return self._run(
            "finished_goods_summary",
            nrc_job_no,
            None,
            lambda: self._finished_goods.summary(nrc_job_no),
            exclusive=False,
        )

    def add_finished_goods(
        self,
        nrc_job_no: str,
        quantity: int,
        actor: Actor,
        remarks: str | None = None,
    ) -> FinishedGoodsSummary:
        """Manually bank over-production for a job.  Privileged only."""

        def work() -> FinishedGoodsSummary:
            self._require_privileged(actor, "add finished goods")
            self._finished_goods.add_manual_entry(
                nrc_job_no, quantity, actor_id=actor.user_id, remarks=remarks
            )
            return self._finished_goods.summary(nrc_job_no)

        summary = self._run("add_finished_goods", nrc_job_no, actor, work)
        self._report("finished_goods_added", nrc_job_no, actor, quantity=quantity)
        return summary

    def verify_ledger(self, nrc_job_no: str) -> None:
        self._run(
            "verify_ledger",
            nrc_job_no,
            None,
            lambda: self._finished_goods.verify_ledger(nrc_job_no),
            exclusive=False,
        )
