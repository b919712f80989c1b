"""Database layer - engine, base classes, column types, and immutability."""

from supply_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from supply_kernel.db.engine import (
    build_engine,
    begin_snapshot_read,
    create_tables,
    get_engine,
    get_session,
    session_scope,
)
from supply_kernel.db.types import ExactDecimal, LineQuantity, Money, UTCDateTime

__all__ = [
    "UUID",
    "Base",
    "TrackedBase",
    "UUIDString",
    "build_engine",
    "begin_snapshot_read",
    "create_tables",
    "get_engine",
    "get_session",
    "session_scope",
    "ExactDecimal",
    "LineQuantity",
    "Money",
    "UTCDateTime",
]
