"""Cycle ORM — persists one instance of the recurring event (aggregate root).

Invariants:
    - id is UUID primary key
    - status in CycleStatus values; mutated only by the cycle controller
    - automation_enabled is the kill switch (default on)
    - cascade delete for registrants: a cycle exclusively owns its queue

Design Decisions:
    - JSON column for venue: stored as the validated Venue dict, rebuilt into the
      value object by the store (never handed to core as a raw dict)
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Integer, Boolean, JSON, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import UUID

from waterfall.db.base import Base
from waterfall.db.types import UTCDateTime


class Cycle(Base):
    """Cycle aggregate root — owns all registrants."""
    __tablename__ = "cycles"
    __table_args__ = (
        CheckConstraint("capacity >= 1", name="ck_cycles_capacity_positive"),
        CheckConstraint(
            "window_opens_at < cutoff_at", name="ck_cycles_window_before_cutoff",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    event_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    window_opens_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    cutoff_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    timezone: Mapped[str] = mapped_column(
        String(64), nullable=False, default="UTC",
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="draft",
    )
    automation_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True,
    )
    venue: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    registrants: Mapped[list["Registrant"]] = relationship(
        "Registrant", back_populates="cycle",
        cascade="all, delete-orphan", passive_deletes=True,
    )
