"""
WorkflowConfig schema.

The parsed, validated form of a workflow configuration set.  YAML is parsed
into these types by the loader; bridges translate them into the kernel's
policy objects.
"""

from __future__ import annotations

from dataclasses import dataclass

from production_kernel.domain.step_types import StepName


@dataclass(frozen=True)
class RoleSets:
    privileged: frozenset[str]
    quality_signoff: frozenset[str] = frozenset()
    held_machine_viewers: frozenset[str] = frozenset()


@dataclass(frozen=True)
class WorkflowConfig:
    """Runtime workflow configuration (frozen)."""

    config_id: str
    version: int
    checksum: str
    step_machine_types: tuple[tuple[StepName, tuple[str, ...]], ...]
    roles: RoleSets
    role_step_permissions: tuple[tuple[str, frozenset[StepName]], ...]
    description: str = ""

    def machine_types_for(self, step_name: StepName) -> tuple[str, ...]:
        for step, types in self.step_machine_types:
            if step is step_name:
                return types
        return ()
