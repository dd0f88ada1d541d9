"""Registrant Schemas — Pydantic models for queue entry and invitation responses.

Invariants:
    - identity is opaque to the core: only stripped and length-bounded here
    - RespondRequest.decision is one of accept | decline
    - Only admin enrollment (PriorityRegisterRequest) carries a priority class; a
      priority_class sent to the public endpoint is ignored

Design Decisions:
    - Literal for decision over the Decision enum on input: Pydantic rejects unknown
      values with a field-level error, the route converts to the domain enum
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from waterfall.core.domain_types import PriorityClass, RegistrantStatus
from waterfall.core.entities import Registrant


class RegisterRequest(BaseModel):
    """Self-service queue entry. Always enrolls in the normal class."""
    identity: str = Field(min_length=1, max_length=320)

    @field_validator("identity")
    @classmethod
    def strip_identity(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("identity cannot be empty or whitespace")
        return v


class PriorityRegisterRequest(RegisterRequest):
    """Admin enrollment with an explicit priority class."""
    priority_class: PriorityClass = PriorityClass.PRIORITY


class RespondRequest(BaseModel):
    decision: Literal["accept", "decline"]


class RegistrantResponse(BaseModel):
    """Registrant response — public-facing queue entry."""
    id: UUID
    cycle_id: UUID
    identity: str
    position: int
    status: RegistrantStatus
    priority_class: PriorityClass
    manual_override: bool
    invited_at: datetime | None = None
    response_deadline: datetime | None = None
    responded_at: datetime | None = None
    checked_in_at: datetime | None = None

    @classmethod
    def from_entity(cls, registrant: Registrant) -> "RegistrantResponse":
        return cls(
            id=registrant.id,
            cycle_id=registrant.cycle_id,
            identity=registrant.identity,
            position=registrant.position,
            status=registrant.status,
            priority_class=registrant.priority_class,
            manual_override=registrant.manual_override,
            invited_at=registrant.invited_at,
            response_deadline=registrant.response_deadline,
            responded_at=registrant.responded_at,
            checked_in_at=registrant.checked_in_at,
        )
