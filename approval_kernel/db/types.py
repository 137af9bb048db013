"""
Module: approval_kernel.db.types
Responsibility: Column types shared by every model.
Architecture position: Kernel > DB.  MUST NOT import from models/,
    services/ or domain/.

Invariants enforced:
    - Timestamps are always returned timezone-aware (UTC), also on
      backends such as SQLite that drop the offset on storage.
"""

from datetime import timezone

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """DateTime(timezone=True) that never hands back a naive value."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
