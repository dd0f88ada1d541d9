"""Column Types — timezone-safe DateTime for every timestamp column.

Invariants:
    - Values written must be timezone-aware (naive datetimes rejected)
    - Values read are always timezone-aware UTC, whatever the driver returns

Design Decisions:
    - SQLite (tests) drops tzinfo on DateTime(timezone=True); PostgreSQL keeps it.
      Normalizing here keeps deadline comparisons identical on both backends
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime not allowed; use timezone-aware UTC")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
