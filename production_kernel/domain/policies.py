"""
Access and machine-type policies (``production_kernel.domain.policies``).

Responsibility
--------------
Pure predicates the workflow consults about *who* may act on a step and
*which* machines a step runs on.  Instances are built from configuration by
``production_config.bridges``; the kernel never reads configuration itself.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Role names compare case-insensitively (stored lower-case).
* Privileged roles are permitted every step.
* A step with no configured machine types has no eligible machines.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from production_kernel.domain.dtos import Actor
from production_kernel.domain.step_types import StepName


def _freeze_mapping(mapping: Mapping) -> Mapping:
    return MappingProxyType(dict(mapping))


@dataclass(frozen=True)
class AccessPolicy:
    """
    Role predicates for workflow operations.

    Contract:
        ``is_privileged`` and ``may_work_step`` are the only role questions
        the orchestrator asks when gating a transition.
    """

    privileged_roles: frozenset[str]
    role_step_permissions: Mapping[str, frozenset[StepName]] = field(default_factory=dict)
    quality_signoff_roles: frozenset[str] = frozenset()
    held_machine_viewer_roles: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "privileged_roles", frozenset(r.lower() for r in self.privileged_roles)
        )
        object.__setattr__(
            self, "quality_signoff_roles",
            frozenset(r.lower() for r in self.quality_signoff_roles),
        )
        object.__setattr__(
            self, "held_machine_viewer_roles",
            frozenset(r.lower() for r in self.held_machine_viewer_roles),
        )
        object.__setattr__(
            self, "role_step_permissions",
            _freeze_mapping({
                role.lower(): frozenset(steps)
                for role, steps in self.role_step_permissions.items()
            }),
        )

    def is_privileged(self, actor: Actor) -> bool:
        return bool(actor.roles & self.privileged_roles)

    def may_work_step(self, actor: Actor, step_name: StepName) -> bool:
        if self.is_privileged(actor):
            return True
        return any(
            step_name in self.role_step_permissions.get(role, frozenset())
            for role in actor.roles
        )

    def may_sign_off_quality(self, actor: Actor) -> bool:
        return self.is_privileged(actor) or bool(actor.roles & self.quality_signoff_roles)

    def may_view_held_machines(self, actor: Actor) -> bool:
        return self.is_privileged(actor) or bool(actor.roles & self.held_machine_viewer_roles)


@dataclass(frozen=True)
class MachineTypeRules:
    """Which machine types can run each machine-backed step."""

    step_machine_types: Mapping[StepName, tuple[str, ...]]

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "step_machine_types",
            _freeze_mapping({
                StepName.parse(step): tuple(types)
                for step, types in self.step_machine_types.items()
            }),
        )

    def types_for(self, step_name: StepName) -> tuple[str, ...]:
        if not step_name.is_machine_backed:
            return ()
        return self.step_machine_types.get(step_name, ())
