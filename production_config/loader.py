"""
Configuration Loader (``production_config.loader``).

Responsibility
--------------
Loads a YAML configuration set and parses it into a ``WorkflowConfig``.
Callers use ``production_config.get_active_config()``; this module is the
parsing step behind it.

Invariants enforced
-------------------
* Every step name is parsed through ``StepName.parse``; unknown names fail.
* Only machine-backed steps may declare machine types, and every
  machine-backed step must declare at least one.
* At least one privileged role is declared.
* ``compute_checksum`` is deterministic for identical content.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Structural problems  -> ``ConfigurationError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from production_config.schema import RoleSets, WorkflowConfig
from production_kernel.domain.step_types import StepName
from production_kernel.exceptions import ConfigurationError, UnknownStepNameError


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file and return its contents as a dict."""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError("top level must be a mapping", source=str(path))
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _role_set(values: Any, key: str, source: str) -> frozenset[str]:
    if values is None:
        return frozenset()
    if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
        raise ConfigurationError(f"roles.{key} must be a list of role names", source=source)
    return frozenset(v.strip().lower() for v in values)


def _step_names(values: Any, where: str, source: str) -> tuple[StepName, ...]:
    if not isinstance(values, list):
        raise ConfigurationError(f"{where} must be a list of step names", source=source)
    try:
        return tuple(StepName.parse(v) for v in values)
    except UnknownStepNameError as exc:
        raise ConfigurationError(f"{where}: {exc}", source=source) from exc


def parse_step_machine_types(
    data: Any, source: str
) -> tuple[tuple[StepName, tuple[str, ...]], ...]:
    if not isinstance(data, dict):
        raise ConfigurationError("step_machine_types must be a mapping", source=source)

    parsed: dict[StepName, tuple[str, ...]] = {}
    for raw_step, raw_types in data.items():
        try:
            step = StepName.parse(raw_step)
        except UnknownStepNameError as exc:
            raise ConfigurationError(f"step_machine_types: {exc}", source=source) from exc
        if not step.is_machine_backed:
            raise ConfigurationError(
                f"step_machine_types: {step.value} does not run on machines",
                source=source,
            )
        if not isinstance(raw_types, list) or not raw_types:
            raise ConfigurationError(
                f"step_machine_types.{step.value} must be a non-empty list",
                source=source,
            )
        parsed[step] = tuple(str(t).strip() for t in raw_types)

    missing = [s.value for s in StepName if s.is_machine_backed and s not in parsed]
    if missing:
        raise ConfigurationError(
            f"step_machine_types missing machine-backed steps: {missing}",
            source=source,
        )
    return tuple((step, parsed[step]) for step in StepName if step in parsed)


def parse_config(data: dict[str, Any], source: str = "<memory>") -> WorkflowConfig:
    """Parse a configuration mapping into a frozen WorkflowConfig."""
    for key in ("config_id", "version", "step_machine_types", "roles"):
        if key not in data:
            raise ConfigurationError(f"missing required key {key!r}", source=source)

    roles_data = data["roles"] or {}
    if not isinstance(roles_data, dict):
        raise ConfigurationError("roles must be a mapping", source=source)
    roles = RoleSets(
        privileged=_role_set(roles_data.get("privileged"), "privileged", source),
        quality_signoff=_role_set(roles_data.get("quality_signoff"), "quality_signoff", source),
        held_machine_viewers=_role_set(
            roles_data.get("held_machine_viewers"), "held_machine_viewers", source
        ),
    )
    if not roles.privileged:
        raise ConfigurationError("roles.privileged must name at least one role", source=source)

    permissions_data = data.get("role_step_permissions") or {}
    if not isinstance(permissions_data, dict):
        raise ConfigurationError("role_step_permissions must be a mapping", source=source)
    permissions = tuple(
        (
            str(role).strip().lower(),
            frozenset(_step_names(steps, f"role_step_permissions.{role}", source)),
        )
        for role, steps in sorted(permissions_data.items())
    )

    return WorkflowConfig(
        config_id=str(data["config_id"]),
        version=int(data["version"]),
        checksum=compute_checksum(data),
        step_machine_types=parse_step_machine_types(data["step_machine_types"], source),
        roles=roles,
        role_step_permissions=permissions,
        description=str(data.get("description") or ""),
    )
