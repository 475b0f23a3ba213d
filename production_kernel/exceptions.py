"""
Typed Exception Hierarchy for the Production Workflow Kernel.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ProductionWorkflowError:

    ProductionWorkflowError (base)
    |
    +-- WorkflowStateError
    |   +-- InvalidTransitionError
    |   +-- UnknownStepNameError
    |   +-- StepNotFoundError
    |   +-- PlanningNotFoundError
    |   +-- PlanningAlreadyExistsError
    |   +-- InvalidPlanningError
    |
    +-- DependencyNotSatisfiedError
    |
    +-- AllocationError
    |   +-- MachineAlreadyClaimedError
    |   +-- MachineNotEligibleError
    |   +-- ClaimOwnershipMismatchError
    |   +-- ClaimNotFoundError
    |   +-- InvalidClaimStateError
    |
    +-- AccessDeniedError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModificationError
    |
    +-- ReconciliationError
    |   +-- InvalidDispatchRequestError
    |   +-- PurchaseOrderQuantityMissingError
    |   +-- LedgerInconsistencyError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES
===============================================================================

Category        | Code                        | Meaning
----------------|-----------------------------|-----------------------------------------
State           | INVALID_TRANSITION          | Requested edge not in the step workflow
                | UNKNOWN_STEP_NAME           | Step name outside the fixed step set
                | STEP_NOT_FOUND              | No step with that number in the planning
                | PLANNING_NOT_FOUND          | Job has no live planning
                | PLANNING_ALREADY_EXISTS     | Job already has a live planning
                | INVALID_PLANNING            | Step numbers duplicated or out of order
----------------|-----------------------------|-----------------------------------------
Dependency      | DEPENDENCY_NOT_SATISFIED    | Predecessors not started/accepted/signed
----------------|-----------------------------|-----------------------------------------
Allocation      | MACHINE_ALREADY_CLAIMED     | Another machine owns the step
                | MACHINE_NOT_ELIGIBLE        | Machine type does not match the step
                | CLAIM_OWNERSHIP_MISMATCH    | started_by machine differs from owner
                | CLAIM_NOT_FOUND             | Machine has no claim on the step
                | INVALID_CLAIM_STATE         | Claim not in a state allowing the action
----------------|-----------------------------|-----------------------------------------
Access          | ACCESS_DENIED               | Role or machine assignment forbids action
----------------|-----------------------------|-----------------------------------------
Concurrency     | CONCURRENT_MODIFICATION     | Compare-and-set lost against another writer
----------------|-----------------------------|-----------------------------------------
Reconciliation  | INVALID_DISPATCH_REQUEST    | Dispatch form values failed validation
                | PO_QUANTITY_MISSING         | No purchase order quantity to dispatch to
                | LEDGER_INCONSISTENCY        | Finished-goods identities broken (fatal)
----------------|-----------------------------|-----------------------------------------
Configuration   | CONFIGURATION_ERROR         | Workflow configuration failed validation

Insufficient finished goods during dispatch is NOT an exception: the
shortfall is carried on the consumption plan and logged as a warning.

===============================================================================
HANDLING PATTERNS
===============================================================================

1. SURFACE PRECONDITION FAILURES WITH STRUCTURED DATA:

    except DependencyNotSatisfiedError as e:
        return {"error": e.code, "unmet": list(e.unmet)}

2. RETRY ONCE ON CONCURRENCY LOSS (the orchestrator does this itself):

    except ConcurrentModificationError:
        session.rollback()
        ...re-run against fresh state...

3. LEDGER INCONSISTENCY IS FATAL:

    except LedgerInconsistencyError as e:
        alert_operations(e)
        # never auto-correct

===============================================================================
"""

from collections.abc import Iterable


class ProductionWorkflowError(Exception):
    """
    Base exception for all production workflow errors.

    All subclasses carry a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PRODUCTION_WORKFLOW_ERROR"


# State-related exceptions


class WorkflowStateError(ProductionWorkflowError):
    """Base exception for step and planning state errors."""

    code: str = "WORKFLOW_STATE_ERROR"


class InvalidTransitionError(WorkflowStateError):
    """Requested status change is not an edge of the step workflow."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, step_name: str, current_status: str, requested_status: str):
        self.step_name = step_name
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(
            f"Invalid transition for {step_name}: "
            f"{current_status} -> {requested_status}"
        )


class UnknownStepNameError(WorkflowStateError):
    """Step name is not one of the fixed production step types."""

    code: str = "UNKNOWN_STEP_NAME"

    def __init__(self, step_name: str):
        self.step_name = step_name
        super().__init__(f"Unknown step name: {step_name!r}")


class StepNotFoundError(WorkflowStateError):
    code: str = "STEP_NOT_FOUND"

    def __init__(self, nrc_job_no: str, step_no: int):
        self.nrc_job_no = nrc_job_no
        self.step_no = step_no
        super().__init__(f"Step {step_no} not found for job {nrc_job_no}")


class PlanningNotFoundError(WorkflowStateError):
    code: str = "PLANNING_NOT_FOUND"

    def __init__(self, nrc_job_no: str):
        self.nrc_job_no = nrc_job_no
        super().__init__(f"No live planning for job {nrc_job_no}")


class PlanningAlreadyExistsError(WorkflowStateError):
    """A job may have only one live planning at a time."""

    code: str = "PLANNING_ALREADY_EXISTS"

    def __init__(self, nrc_job_no: str, job_planning_id: str):
        self.nrc_job_no = nrc_job_no
        self.job_planning_id = job_planning_id
        super().__init__(
            f"Job {nrc_job_no} already has live planning {job_planning_id}"
        )


class InvalidPlanningError(WorkflowStateError):
    code: str = "INVALID_PLANNING"

    def __init__(self, nrc_job_no: str, reason: str):
        self.nrc_job_no = nrc_job_no
        self.reason = reason
        super().__init__(f"Invalid planning for job {nrc_job_no}: {reason}")


class InvalidStepDetailError(WorkflowStateError):
    """A step detail form field is not a usable whole-piece count."""

    code: str = "INVALID_STEP_DETAIL"

    def __init__(self, field: str, value: object, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid step detail {field}={value!r}: {reason}")


# Dependency exceptions


class DependencyNotSatisfiedError(ProductionWorkflowError):
    """
    One or more predecessor steps block the requested transition.

    ``unmet`` lists predecessor names in step order, e.g.
    ``("Corrugation (must be accepted)",)``.
    """

    code: str = "DEPENDENCY_NOT_SATISFIED"

    def __init__(self, step_name: str, unmet: Iterable[str]):
        self.step_name = step_name
        self.unmet = tuple(unmet)
        super().__init__(
            f"Dependencies not satisfied for {step_name}: {list(self.unmet)}"
        )


# Allocation-related exceptions


class AllocationError(ProductionWorkflowError):
    """Base exception for machine allocation errors."""

    code: str = "ALLOCATION_ERROR"


class MachineAlreadyClaimedError(AllocationError):
    """Step is exclusively owned by a different machine."""

    code: str = "MACHINE_ALREADY_CLAIMED"

    def __init__(self, step_id: str, requested_machine_id: str, owner_machine_id: str):
        self.step_id = step_id
        self.requested_machine_id = requested_machine_id
        self.owner_machine_id = owner_machine_id
        super().__init__(
            f"Step {step_id} is already claimed by machine {owner_machine_id}; "
            f"machine {requested_machine_id} cannot claim it"
        )


class MachineNotEligibleError(AllocationError):
    code: str = "MACHINE_NOT_ELIGIBLE"

    def __init__(self, step_name: str, machine_id: str, machine_type: str | None):
        self.step_name = step_name
        self.machine_id = machine_id
        self.machine_type = machine_type
        super().__init__(
            f"Machine {machine_id} (type {machine_type!r}) is not eligible "
            f"for {step_name}"
        )


class ClaimOwnershipMismatchError(AllocationError):
    """A claim's started_by machine differs from the machine that holds it."""

    code: str = "CLAIM_OWNERSHIP_MISMATCH"

    def __init__(self, claim_id: str, machine_id: str, started_by_machine_id: str):
        self.claim_id = claim_id
        self.machine_id = machine_id
        self.started_by_machine_id = started_by_machine_id
        super().__init__(
            f"Claim {claim_id} is held for machine {machine_id} but was "
            f"started by {started_by_machine_id}"
        )


class ClaimNotFoundError(AllocationError):
    code: str = "CLAIM_NOT_FOUND"

    def __init__(self, step_id: str, machine_id: str):
        self.step_id = step_id
        self.machine_id = machine_id
        super().__init__(f"Machine {machine_id} has no claim on step {step_id}")


class InvalidClaimStateError(AllocationError):
    code: str = "INVALID_CLAIM_STATE"

    def __init__(self, claim_id: str, current_status: str, action: str):
        self.claim_id = claim_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {action} claim {claim_id} in status {current_status}"
        )


# Access exceptions


class AccessDeniedError(ProductionWorkflowError):
    """Caller's roles or machine assignments do not permit the action."""

    code: str = "ACCESS_DENIED"

    def __init__(self, actor_id: str, action: str, reason: str):
        self.actor_id = actor_id
        self.action = action
        self.reason = reason
        super().__init__(f"Access denied for {actor_id} to {action}: {reason}")


# Concurrency-related exceptions


class ConcurrencyError(ProductionWorkflowError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationError(ConcurrencyError):
    """Compare-and-set update found the row in a different state."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, entity_type: str, entity_id: str, expected_status: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_status = expected_status
        super().__init__(
            f"Concurrent modification on {entity_type} {entity_id}: "
            f"expected status {expected_status}"
        )


# Reconciliation exceptions


class ReconciliationError(ProductionWorkflowError):
    """Base exception for dispatch and finished-goods errors."""

    code: str = "RECONCILIATION_ERROR"


class InvalidDispatchRequestError(ReconciliationError):
    code: str = "INVALID_DISPATCH_REQUEST"

    def __init__(self, field: str, value: object, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid dispatch {field}={value!r}: {reason}")


class PurchaseOrderQuantityMissingError(ReconciliationError):
    code: str = "PO_QUANTITY_MISSING"

    def __init__(self, nrc_job_no: str):
        self.nrc_job_no = nrc_job_no
        super().__init__(
            f"Job {nrc_job_no} has no purchase order quantity to dispatch against"
        )


class LedgerInconsistencyError(ReconciliationError):
    """
    Finished-goods ledger identities do not hold.

    Fatal integrity error: never corrected automatically.
    """

    code: str = "LEDGER_INCONSISTENCY"

    def __init__(self, nrc_job_no: str, entry_id: str | None, reason: str):
        self.nrc_job_no = nrc_job_no
        self.entry_id = entry_id
        self.reason = reason
        super().__init__(
            f"Finished-goods ledger inconsistent for job {nrc_job_no}"
            f"{f' (entry {entry_id})' if entry_id else ''}: {reason}"
        )


# Configuration exceptions


class ConfigurationError(ProductionWorkflowError):
    code: str = "CONFIGURATION_ERROR"

    def __init__(self, reason: str, source: str | None = None):
        self.reason = reason
        self.source = source
        super().__init__(
            f"Workflow configuration invalid{f' ({source})' if source else ''}: {reason}"
        )
