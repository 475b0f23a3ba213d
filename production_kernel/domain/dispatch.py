"""
DispatchRequest -- the validated dispatch form.

Responsibility:
    Converts the loosely-typed dispatch form fields coming from the HTTP
    layer (strings, missing keys, blank values) into one immutable value
    object with validated whole-number quantities.  Reconciliation reads
    only this object.

Architecture position:
    Kernel > Domain -- pure value object, zero I/O.

Invariants enforced:
    - ``dispatch_quantity`` and ``leftover_finished_goods`` are ints >= 0.
    - ``dispatch_no`` is never blank; a default is derived from the
      dispatch date when the form omits one.

Failure modes:
    - InvalidDispatchRequestError for negative, fractional or non-numeric
      quantities, and for naive dispatch dates.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from production_kernel.exceptions import InvalidDispatchRequestError, ProductionWorkflowError


def coerce_quantity(
    field_name: str,
    value: Any,
    error: type[ProductionWorkflowError] = InvalidDispatchRequestError,
) -> int:
    """
    Parse a form value into a whole-piece count >= 0; blank means 0.

    ``error`` is raised as ``error(field_name, value, reason)``.
    """
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise error(field_name, value, "must be a number")
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        raise error(field_name, value, "must be a number") from None
    if not number.is_finite() or number != number.to_integral_value():
        raise error(field_name, value, "must be a whole number")
    if number < 0:
        raise error(field_name, value, "must not be negative")
    return int(number)


@dataclass(frozen=True)
class DispatchRequest:
    """
    One dispatch action against a job's DispatchProcess step.

    Contract:
        Construct once at the boundary (``from_form`` for raw form data).
        All quantities are validated whole-piece counts.
    """

    dispatch_quantity: int
    dispatch_no: str | None = None
    dispatch_date: datetime | None = None
    leftover_finished_goods: int = 0
    operator_name: str | None = None
    remarks: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "dispatch_quantity",
            coerce_quantity("dispatch_quantity", self.dispatch_quantity),
        )
        object.__setattr__(
            self, "leftover_finished_goods",
            coerce_quantity("leftover_finished_goods", self.leftover_finished_goods),
        )
        if self.dispatch_date is not None and self.dispatch_date.tzinfo is None:
            raise InvalidDispatchRequestError(
                "dispatch_date", self.dispatch_date, "must be timezone-aware"
            )
        if self.dispatch_no is not None and not self.dispatch_no.strip():
            object.__setattr__(self, "dispatch_no", None)

    @property
    def has_quantity(self) -> bool:
        return self.dispatch_quantity > 0

    def resolved_dispatch_no(self, when: datetime) -> str:
        """The dispatch number to record, defaulting to one derived from time."""
        if self.dispatch_no:
            return self.dispatch_no.strip()
        return f"DISP-{int(when.timestamp() * 1000)}"

    @classmethod
    def from_form(cls, form: Mapping[str, Any]) -> DispatchRequest:
        """
        Build from dispatch form fields.

        Accepted keys: ``quantity`` (or ``dispatchedQty``), ``dispatchNo``,
        ``dispatchDate`` (ISO-8601 text or datetime), ``finishedGoodsQty``,
        ``operatorName``, ``remarks``.
        """
        quantity = form.get("quantity", form.get("dispatchedQty"))
        raw_date = form.get("dispatchDate")
        dispatch_date: datetime | None
        if raw_date in (None, ""):
            dispatch_date = None
        elif isinstance(raw_date, datetime):
            dispatch_date = raw_date
        else:
            try:
                dispatch_date = datetime.fromisoformat(str(raw_date).replace("Z", "+00:00"))
            except ValueError:
                raise InvalidDispatchRequestError(
                    "dispatch_date", raw_date, "must be an ISO-8601 timestamp"
                ) from None

        return cls(
            dispatch_quantity=quantity,
            dispatch_no=form.get("dispatchNo") or None,
            dispatch_date=dispatch_date,
            leftover_finished_goods=form.get("finishedGoodsQty"),
            operator_name=form.get("operatorName") or None,
            remarks=form.get("remarks") or None,
        )
