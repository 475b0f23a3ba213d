"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every service in the kernel layer.  All concrete services inherit
    from BaseService, receiving a SQLAlchemy ``Session`` that they use
    via ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Every service in ``production_kernel/services/`` that writes extends
    this class.

Invariants enforced:
    Transaction boundaries: services flush within the caller's
    transaction and never commit or roll back themselves.  The caller
    (WorkflowOrchestrator or the test harness) owns commit/rollback.

Failure modes:
    - If a subclass commits on its own, a transition and its claim,
      dispatch and archival writes are no longer one atomic unit.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from production_kernel.db.base import Base
from production_kernel.domain.clock import Clock, SystemClock
from production_kernel.models.job import Job

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` (and optionally a ``Clock``) from
        the caller and uses ``session.flush()`` to persist changes within
        the active transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read-only queries -- those belong in
          ``production_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self._clock = clock or SystemClock()

    def _lock_job(self, nrc_job_no: str) -> Job | None:
        """SELECT ... FOR UPDATE on the job row (no-op lock on SQLite)."""
        return self.session.execute(
            select(Job).where(Job.nrc_job_no == nrc_job_no).with_for_update()
        ).scalar_one_or_none()
