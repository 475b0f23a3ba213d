"""
Activity log seam.

The orchestrator reports every committed workflow change to an
``ActivitySink``.  Persisting and formatting the activity log belongs to an
outer layer; the default sink only writes a structured log record.

Delivery is best-effort: ``notify`` catches and logs sink failures
(``activity_sink_failed``) so a broken sink never undoes a committed change.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from production_kernel.logging_config import get_logger

logger = get_logger("services.activity")


@dataclass(frozen=True)
class ActivityEvent:
    """One committed workflow change, as reported to the activity log."""

    action: str
    nrc_job_no: str
    actor_id: str
    occurred_at: datetime
    step_no: int | None = None
    step_name: str | None = None
    details: Mapping[str, Any] = field(default_factory=dict)


@runtime_checkable
class ActivitySink(Protocol):
    def record(self, event: ActivityEvent) -> None: ...


class LoggingActivitySink:
    """Writes each event as an ``activity_recorded`` log record."""

    def record(self, event: ActivityEvent) -> None:
        logger.info(
            "activity_recorded",
            extra={
                "action": event.action,
                "nrc_job_no": event.nrc_job_no,
                "actor_id": event.actor_id,
                "step_no": event.step_no,
                "step_name": event.step_name,
                "occurred_at": event.occurred_at,
                "details": dict(event.details),
            },
        )


def notify(sink: ActivitySink, event: ActivityEvent) -> bool:
    """Deliver ``event``; returns False (after logging) if the sink raised."""
    try:
        sink.record(event)
    except Exception:
        logger.warning(
            "activity_sink_failed",
            extra={"action": event.action, "nrc_job_no": event.nrc_job_no},
            exc_info=True,
        )
        return False
    return True
