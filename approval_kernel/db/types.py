"""
Module: approval_kernel.db.types
Responsibility: Column types shared by the workflow models.
Architecture position: Kernel > DB.  MUST NOT import from models/, services/,
    selectors/ or domain/.

The logical schema stores applicability and stage assignment as arrays.
StringList keeps them as a sorted JSON list so the same models run on
PostgreSQL and on SQLite; ordering is canonical so equal sets compare equal.
"""

from sqlalchemy import JSON
from sqlalchemy.types import TypeDecorator


class StringList(TypeDecorator):
    """Set of strings persisted as a sorted, de-duplicated JSON list."""

    impl = JSON
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return []
        return sorted({str(v) for v in value})

    def process_result_value(self, value, dialect):
        if value is None:
            return []
        return list(value)
