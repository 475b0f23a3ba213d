"""
Step types and status vocabularies (``production_kernel.domain.step_types``).

Responsibility
--------------
The closed set of production step names and every status enum the workflow
persists.  Behaviour that varies by step type is expressed as properties on
``StepName`` so callers never inspect the name text.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* ``StepName.parse`` is the only way to turn persisted or request text into
  a step type; unknown names raise ``UnknownStepNameError``.
* Each classification property covers every member explicitly.
"""

from __future__ import annotations

from enum import Enum

from production_kernel.exceptions import UnknownStepNameError


class StepName(str, Enum):
    """The fixed manufacturing pipeline, in canonical order."""

    PAPER_STORE = "PaperStore"
    PRINTING_DETAILS = "PrintingDetails"
    CORRUGATION = "Corrugation"
    FLUTE_LAMINATE_BOARD_CONVERSION = "FluteLaminateBoardConversion"
    PUNCHING = "Punching"
    SIDE_FLAP_PASTING = "SideFlapPasting"
    QUALITY_DEPT = "QualityDept"
    DISPATCH_PROCESS = "DispatchProcess"

    @classmethod
    def parse(cls, value: str | StepName) -> StepName:
        if isinstance(value, StepName):
            return value
        try:
            return cls(value)
        except ValueError:
            raise UnknownStepNameError(str(value)) from None

    @property
    def is_machine_backed(self) -> bool:
        """Work happens on a physical machine and completes via machine claims."""
        return self in _MACHINE_BACKED

    @property
    def is_parallel_group(self) -> bool:
        """Printing and corrugation run side by side off the issued paper."""
        return self in _PARALLEL_GROUP

    @property
    def permits_skip(self) -> bool:
        """May go planned -> stop without ever starting."""
        return self in _SKIPPABLE

    @property
    def requires_dispatch_reconciliation(self) -> bool:
        return self is StepName.DISPATCH_PROCESS

    @property
    def detail_key(self) -> str:
        """Key used for this step's records in archived snapshots."""
        return self.value[0].lower() + self.value[1:]


_MACHINE_BACKED = frozenset({
    StepName.PRINTING_DETAILS,
    StepName.CORRUGATION,
    StepName.FLUTE_LAMINATE_BOARD_CONVERSION,
    StepName.PUNCHING,
    StepName.SIDE_FLAP_PASTING,
})

_PARALLEL_GROUP = frozenset({
    StepName.PRINTING_DETAILS,
    StepName.CORRUGATION,
})

_SKIPPABLE = frozenset({
    StepName.PAPER_STORE,
    StepName.QUALITY_DEPT,
})

PARALLEL_GROUP: tuple[StepName, ...] = (
    StepName.PRINTING_DETAILS,
    StepName.CORRUGATION,
)


class StepStatus(str, Enum):
    """Persisted state of a job step."""

    PLANNED = "planned"
    START = "start"
    STOP = "stop"
    MAJOR_HOLD = "major_hold"


class DetailStatus(str, Enum):
    """Status of a step's detail record."""

    IN_PROGRESS = "in_progress"
    ACCEPT = "accept"


class ClaimStatus(str, Enum):
    """Lifecycle of one machine's claim on a step."""

    AVAILABLE = "available"
    IN_PROGRESS = "in_progress"
    HOLD = "hold"
    STOP = "stop"


class JobDemand(str, Enum):
    NORMAL = "normal"
    HIGH = "high"


class JobStatus(str, Enum):
    ACTIVE = "active"
    HOLD = "hold"
    INACTIVE = "inactive"


class LedgerEntryStatus(str, Enum):
    """Finished-goods entry state."""

    AVAILABLE = "available"
    CONSUMED = "consumed"


class LedgerEntrySource(str, Enum):
    """Why stock was banked in the finished-goods ledger."""

    EXCESS = "excess"
    LEFTOVER = "leftover"
    MANUAL = "manual"
