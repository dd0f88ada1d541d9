"""Cycle Schemas — Pydantic models for cycle administration endpoints.

Invariants:
    - Every datetime on input must carry a UTC offset (AwareDatetime)
    - CycleCreate cross-validates window_opens_at < cutoff_at <= event_at
    - Venue payloads are converted to the core Venue value object at the boundary

Design Decisions:
    - Schedule checks duplicated here and in CycleController: the schema gives a
      field-level 400 early, the controller guards non-HTTP callers
"""

from datetime import datetime
from uuid import UUID

from pydantic import AwareDatetime, BaseModel, Field, field_validator, model_validator

from waterfall.core.domain_types import CycleStatus
from waterfall.core.entities import Cycle
from waterfall.core.venue import Venue
from waterfall.core.window_policy import validate_timezone


class VenuePayload(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    address: str = Field("", max_length=500)
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    capacity: int = Field(ge=1)

    def to_venue(self) -> Venue:
        return Venue(**self.model_dump())


class CycleCreate(BaseModel):
    """Cycle creation — validates schedule ordering and time zone."""
    name: str = Field(min_length=1, max_length=200)
    event_at: AwareDatetime
    window_opens_at: AwareDatetime
    cutoff_at: AwareDatetime
    capacity: int = Field(ge=1, le=100_000)
    timezone: str | None = None
    venue: VenuePayload | None = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name cannot be empty or whitespace")
        return v

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v: str | None) -> str | None:
        if v is not None:
            validate_timezone(v)
        return v

    @model_validator(mode="after")
    def validate_schedule(self):
        if self.window_opens_at >= self.cutoff_at:
            raise ValueError("cutoff_at must be after window_opens_at")
        if self.cutoff_at > self.event_at:
            raise ValueError("cutoff_at cannot be after event_at")
        return self


class CycleResponse(BaseModel):
    id: UUID
    name: str
    status: CycleStatus
    event_at: datetime
    window_opens_at: datetime
    cutoff_at: datetime
    capacity: int
    timezone: str
    automation_enabled: bool
    venue: dict | None = None

    @classmethod
    def from_entity(cls, cycle: Cycle) -> "CycleResponse":
        return cls(
            id=cycle.id,
            name=cycle.name,
            status=cycle.status,
            event_at=cycle.event_at,
            window_opens_at=cycle.window_opens_at,
            cutoff_at=cycle.cutoff_at,
            capacity=cycle.capacity,
            timezone=cycle.timezone,
            automation_enabled=cycle.automation_enabled,
            venue=cycle.venue.to_dict() if cycle.venue else None,
        )


class RolloutRequest(BaseModel):
    """Optional seat override; defaults to the cycle's capacity."""
    capacity: int | None = Field(None, ge=0)


class AutomationUpdate(BaseModel):
    enabled: bool


class OverrideCreate(BaseModel):
    """Admin insert of an identity straight to invited."""
    identity: str = Field(min_length=1, max_length=320)

    @field_validator("identity")
    @classmethod
    def strip_identity(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("identity cannot be empty or whitespace")
        return v
