"""Registrant ORM — persists one identity's queue entry for one cycle.

Invariants:
    - Always belongs to a Cycle (cycle_id FK, ON DELETE CASCADE)
    - (cycle_id, identity) unique: one registrant per identity per cycle
    - (cycle_id, position) unique: positions densely unique within a cycle
    - Never deleted by the application (terminal states persist for audit)

Design Decisions:
    - position assigned by the application (max + 1), not a sequence or trigger,
      so the rule is testable without a database; the unique constraint backstops races
    - ix_registrants_cycle_status serves both promotion claims and expiry scans
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    String, Integer, Boolean, ForeignKey, Index, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import UUID

from waterfall.db.base import Base
from waterfall.db.types import UTCDateTime


class Registrant(Base):
    """Registrant entity — a ranked position in a cycle's queue."""
    __tablename__ = "registrants"
    __table_args__ = (
        UniqueConstraint(
            "cycle_id", "identity", name="uq_registrants_cycle_identity",
        ),
        UniqueConstraint(
            "cycle_id", "position", name="uq_registrants_cycle_position",
        ),
        Index("ix_registrants_cycle_status", "cycle_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    cycle_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("cycles.id", ondelete="CASCADE"),
        nullable=False,
    )
    identity: Mapped[str] = mapped_column(String(255), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="waiting",
    )
    priority_class: Mapped[str] = mapped_column(
        String(20), nullable=False, default="normal",
    )
    manual_override: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    invited_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    response_deadline: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True,
    )
    responded_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True,
    )
    checked_in_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    cycle: Mapped["Cycle"] = relationship("Cycle", back_populates="registrants")
