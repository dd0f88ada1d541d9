"""Initial schema — cycles, registrants.

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "cycles",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("event_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("window_opens_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("cutoff_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("capacity", sa.Integer, nullable=False),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="UTC"),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("automation_enabled", sa.Boolean, nullable=False, server_default="true"),
        sa.Column("venue", sa.JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("capacity >= 1", name="ck_cycles_capacity_positive"),
        sa.CheckConstraint("window_opens_at < cutoff_at", name="ck_cycles_window_before_cutoff"),
    )

    op.create_table(
        "registrants",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "cycle_id", UUID(as_uuid=True),
            sa.ForeignKey("cycles.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("identity", sa.String(255), nullable=False),
        sa.Column("position", sa.Integer, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="waiting"),
        sa.Column("priority_class", sa.String(20), nullable=False, server_default="normal"),
        sa.Column("manual_override", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("invited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("response_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("checked_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("cycle_id", "identity", name="uq_registrants_cycle_identity"),
        sa.UniqueConstraint("cycle_id", "position", name="uq_registrants_cycle_position"),
    )
    op.create_index(
        "ix_registrants_cycle_status", "registrants", ["cycle_id", "status"],
    )


def downgrade() -> None:
    op.drop_index("ix_registrants_cycle_status", table_name="registrants")
    op.drop_table("registrants")
    op.drop_table("cycles")
