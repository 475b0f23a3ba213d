"""
production_services -- Package init and public API.

Responsibility:
    Stateful orchestration that composes the pure engines
    (production_engines/) with database sessions, the per-job lock
    registry and the activity sink.  This is the layer that owns the
    transaction boundary.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction:
        production_services/ -> production_engines/  (allowed)
        production_services/ -> production_kernel/   (allowed)
        production_services/ -> production_config/   (allowed)
        production_engines/  -> production_services/ (FORBIDDEN)
        production_kernel/   -> production_services/ (FORBIDDEN)

Invariants enforced:
    - Kernel service wiring is centralised in WorkflowOrchestrator.

Audit relevance:
    - This package is the import surface for the HTTP layer.
"""

from production_kernel.logging_config import get_logger

logger = get_logger("services")

from production_services.activity_log import (  # noqa: E402
    ActivityEvent,
    ActivitySink,
    LoggingActivitySink,
    notify,
)
from production_services.locks import DEFAULT_LOCK_REGISTRY, KeyedLockRegistry  # noqa: E402
from production_services.workflow_orchestrator import (  # noqa: E402
    TransitionRequest,
    WorkflowOrchestrator,
)

__all__ = [
    "DEFAULT_LOCK_REGISTRY",
    "ActivityEvent",
    "ActivitySink",
    "KeyedLockRegistry",
    "LoggingActivitySink",
    "TransitionRequest",
    "WorkflowOrchestrator",
    "notify",
]
