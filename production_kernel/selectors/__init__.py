"""Selectors for the production kernel (read side)."""

from production_kernel.selectors.machine_selector import MachineSelector, claim_snapshot
from production_kernel.selectors.planning_selector import (
    PlanningSelector,
    detail_snapshot,
    step_snapshot,
)

__all__ = [
    "MachineSelector",
    "PlanningSelector",
    "claim_snapshot",
    "detail_snapshot",
    "step_snapshot",
]
