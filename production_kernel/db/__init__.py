"""Database layer - engine, base classes, and column types."""

from production_kernel.db.base import UUID, Base, TimestampedBase, UTCDateTime, UUIDString
from production_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    session_scope,
)
from production_kernel.db.types import JobNumber, LongText, Quantity, ShortCode, StatusCode

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TimestampedBase",
    "UTCDateTime",
    "UUIDString",
    "UUID",
    "JobNumber",
    "Quantity",
    "StatusCode",
    "ShortCode",
    "LongText",
]
