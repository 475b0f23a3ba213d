"""
Module: production_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    workflow engines.  This is the canonical import surface for the kernel
    services and the orchestrator.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import production_kernel.domain and production_kernel.exceptions
    (and sibling engine modules).
    MUST NOT import production_services or production_kernel.services.

Invariants enforced:
    - Purity: engines never read the clock.  Timestamps arrive as inputs.
    - Integer-only quantities: piece counts never pass through floats.
    - Determinism: identical inputs always produce identical outputs.

Failure modes:
    - Domain errors (InvalidTransitionError, DependencyNotSatisfiedError,
      MachineAlreadyClaimedError, ...) raised by individual engines.
    - ValueError on malformed numeric input.

Audit relevance:
    Every engine invocation is traced via ``@traced_engine`` (see
    ``production_engines.tracer``), emitting PRODUCTION_ENGINE_TRACE records
    with engine name, version, input fingerprint and duration.

Usage:
    from production_engines import evaluate_transition, check_dependencies
    from production_engines.reconciliation import reconcile_dispatch
"""

from production_kernel.logging_config import get_logger

logger = get_logger("engines")

from production_engines.claims import (  # noqa: E402
    ClaimDecision,
    check_claim,
    eligible_machines,
    find_owner,
    select_current_claim,
    validate_claim,
    visible_machines,
)
from production_engines.dependency import (  # noqa: E402
    DependencyCheck,
    DependencyPhase,
    DependencyRule,
    check_dependencies,
    require_dependencies,
)
from production_engines.reconciliation import (  # noqa: E402
    ConsumptionPlan,
    DispatchComputation,
    LedgerDraw,
    LedgerLot,
    plan_fifo_consumption,
    reconcile_dispatch,
)
from production_engines.tracer import compute_input_fingerprint, traced_engine  # noqa: E402
from production_engines.transitions import TransitionDecision, evaluate_transition  # noqa: E402

__all__ = [
    "ClaimDecision",
    "ConsumptionPlan",
    "DependencyCheck",
    "DependencyPhase",
    "DependencyRule",
    "DispatchComputation",
    "LedgerDraw",
    "LedgerLot",
    "TransitionDecision",
    "check_claim",
    "check_dependencies",
    "compute_input_fingerprint",
    "eligible_machines",
    "evaluate_transition",
    "find_owner",
    "plan_fifo_consumption",
    "reconcile_dispatch",
    "require_dependencies",
    "select_current_claim",
    "traced_engine",
    "validate_claim",
    "visible_machines",
]
