"""
Config-to-kernel bridges.

Translate a ``WorkflowConfig`` into the kernel's pure policy objects so the
kernel never imports from ``production_config``.
"""

from __future__ import annotations

from production_config.schema import WorkflowConfig
from production_kernel.domain.policies import AccessPolicy, MachineTypeRules


def build_access_policy(config: WorkflowConfig) -> AccessPolicy:
    return AccessPolicy(
        privileged_roles=config.roles.privileged,
        role_step_permissions=dict(config.role_step_permissions),
        quality_signoff_roles=config.roles.quality_signoff,
        held_machine_viewer_roles=config.roles.held_machine_viewers,
    )


def build_machine_type_rules(config: WorkflowConfig) -> MachineTypeRules:
    return MachineTypeRules(step_machine_types=dict(config.step_machine_types))
