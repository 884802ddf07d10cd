"""Database layer - engine, base classes and column types."""

from approval_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from approval_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    session_scope,
)
from approval_kernel.db.types import StringList

__all__ = [
    "get_engine",
    "get_session",
    "init_engine_from_url",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "StringList",
]
