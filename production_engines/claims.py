"""
production_engines.claims -- Machine claim visibility and exclusivity rules.

Responsibility:
    Pure rules of the machine allocation tracker: which machines are
    eligible for a step, which machine entries a requester may see, whether
    a machine may claim a step, and which historical claim counts as the
    current one.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The service that persists
    claims is production_kernel.services.machine_allocation_service.

Invariants enforced:
    - An owning claim has started_by_machine_id == machine_id; any other
      combination is rejected, never displayed.
    - Once a step has an owner, only the owner's entry is visible to anyone
      and only the owner may (re)claim it.
    - Current-claim tie-break: in_progress, then stop, then anything else;
      within a tier the latest started_at wins.

Failure modes:
    - ClaimOwnershipMismatchError for a self-inconsistent claim.
    - MachineNotEligibleError when the machine's type cannot run the step.
    - MachineAlreadyClaimedError when another machine owns the step.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from production_engines.tracer import traced_engine
from production_kernel.domain.dtos import (
    ClaimSnapshot,
    MachineCatalog,
    MachineInfo,
    VisibleMachine,
)
from production_kernel.domain.policies import MachineTypeRules
from production_kernel.domain.step_types import ClaimStatus, StepName
from production_kernel.exceptions import (
    ClaimOwnershipMismatchError,
    MachineAlreadyClaimedError,
    MachineNotEligibleError,
)

_STATUS_RANK = {
    ClaimStatus.IN_PROGRESS: 0,
    ClaimStatus.STOP: 1,
}

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def validate_claim(claim: ClaimSnapshot) -> ClaimSnapshot:
    """Reject a claim whose started_by machine is not its own machine."""
    if (
        claim.started_by_machine_id is not None
        and claim.started_by_machine_id != claim.machine_id
    ):
        raise ClaimOwnershipMismatchError(
            str(claim.claim_id), str(claim.machine_id), str(claim.started_by_machine_id)
        )
    return claim


def select_current_claim(claims: Sequence[ClaimSnapshot]) -> ClaimSnapshot | None:
    """Pick the claim that represents the step's current machine work."""
    if not claims:
        return None
    return min(
        claims,
        key=lambda c: (
            _STATUS_RANK.get(c.status, 2),
            -(c.started_at or _EPOCH).timestamp(),
        ),
    )


def find_owner(claims: Sequence[ClaimSnapshot]) -> ClaimSnapshot | None:
    """The owning claim of a step, validating every owner row."""
    owners = [validate_claim(c) for c in claims if c.is_owner_claim]
    return select_current_claim(owners)


def eligible_machines(
    step_name: StepName,
    catalog: MachineCatalog,
    rules: MachineTypeRules,
) -> tuple[MachineInfo, ...]:
    """Active catalog machines whose type can run ``step_name``."""
    return catalog.of_types(rules.types_for(step_name))


def _entry(
    machine_id: UUID,
    info: MachineInfo | None,
    status: ClaimStatus,
    is_owner: bool,
) -> VisibleMachine:
    return VisibleMachine(
        machine_id=machine_id,
        machine_code=info.machine_code if info else str(machine_id),
        machine_type=info.machine_type if info else "",
        unit=info.unit if info else None,
        claim_status=status,
        is_owner=is_owner,
    )


@traced_engine("machine_visibility", "1.0", fingerprint_fields=("step_name",))
def visible_machines(
    *,
    step_name: StepName,
    catalog: MachineCatalog,
    rules: MachineTypeRules,
    claims: Sequence[ClaimSnapshot],
) -> tuple[VisibleMachine, ...]:
    """
    Machine entries shown for a step.

    Unclaimed: every eligible machine, each with its claim status (if it
    has a claim row).  Claimed: only the owner, to every requester.
    """
    owner = find_owner(claims)
    if owner is not None:
        return (_entry(owner.machine_id, catalog.get(owner.machine_id), owner.status, True),)

    status_by_machine = {
        c.machine_id: c.status for c in (validate_claim(c) for c in claims)
    }
    return tuple(
        _entry(
            m.machine_id,
            m,
            status_by_machine.get(m.machine_id, ClaimStatus.AVAILABLE),
            False,
        )
        for m in eligible_machines(step_name, catalog, rules)
    )


@dataclass(frozen=True, slots=True)
class ClaimDecision:
    machine: MachineInfo
    already_owner: bool


def check_claim(
    *,
    step_id: UUID,
    step_name: StepName,
    machine_id: UUID,
    catalog: MachineCatalog,
    rules: MachineTypeRules,
    claims: Sequence[ClaimSnapshot],
) -> ClaimDecision:
    """
    Decide whether ``machine_id`` may claim the step.

    Raises:
        MachineNotEligibleError: machine unknown, inactive, or of the wrong type.
        MachineAlreadyClaimedError: a different machine owns the step.
    """
    machine = catalog.get(machine_id)
    eligible_ids = {m.machine_id for m in eligible_machines(step_name, catalog, rules)}
    if machine is None or machine_id not in eligible_ids:
        raise MachineNotEligibleError(
            step_name.value, str(machine_id), machine.machine_type if machine else None
        )

    owner = find_owner(claims)
    if owner is not None and owner.machine_id != machine_id:
        raise MachineAlreadyClaimedError(str(step_id), str(machine_id), str(owner.machine_id))

    return ClaimDecision(machine=machine, already_owner=owner is not None)
