"""Cycle Routes — cycle administration plus queue entry for a cycle.

Invariants:
    - Routes never contain business logic: validation by schemas, rules by services
    - Domain failures propagate as WaitlistError and are rendered by the global handler

Design Decisions:
    - Rollout and overrides return the invited registrants so admins see the effect
    - Public registration is always normal class; priority enrollment is a separate
      admin route
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, status

from waterfall.api.dependencies import get_waitlist_service
from waterfall.config import get_settings
from waterfall.core.domain_types import CycleId, IdentityRef
from waterfall.schemas.cycle import (
    AutomationUpdate, CycleCreate, CycleResponse, OverrideCreate, RolloutRequest,
)
from waterfall.schemas.registrant import (
    PriorityRegisterRequest, RegisterRequest, RegistrantResponse,
)
from waterfall.services.waitlist_service import WaitlistService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/cycles", tags=["cycles"])


@router.post("", response_model=CycleResponse, status_code=status.HTTP_201_CREATED)
async def create_cycle(
    body: CycleCreate, service: WaitlistService = Depends(get_waitlist_service),
):
    """Create a draft cycle."""
    cycle = await service.create_cycle(
        name=body.name,
        event_at=body.event_at,
        window_opens_at=body.window_opens_at,
        cutoff_at=body.cutoff_at,
        capacity=body.capacity,
        timezone=body.timezone or get_settings().default_timezone,
        venue=body.venue.to_venue() if body.venue else None,
    )
    return CycleResponse.from_entity(cycle)


@router.get("/{cycle_id}", response_model=CycleResponse)
async def get_cycle(
    cycle_id: UUID, service: WaitlistService = Depends(get_waitlist_service),
):
    return CycleResponse.from_entity(await service.get_cycle(CycleId(cycle_id)))


@router.post("/{cycle_id}/open", response_model=CycleResponse)
async def open_registration(
    cycle_id: UUID, service: WaitlistService = Depends(get_waitlist_service),
):
    return CycleResponse.from_entity(
        await service.open_registration(CycleId(cycle_id)),
    )


@router.post("/{cycle_id}/rollout", response_model=list[RegistrantResponse])
async def rollout(
    cycle_id: UUID,
    body: RolloutRequest | None = None,
    service: WaitlistService = Depends(get_waitlist_service),
):
    """Bulk-invite up to capacity. A second call returns 409 ALREADY_ROLLED_OUT."""
    capacity = body.capacity if body else None
    promoted = await service.rollout(CycleId(cycle_id), capacity)
    return [RegistrantResponse.from_entity(r) for r in promoted]


@router.put("/{cycle_id}/automation", response_model=CycleResponse)
async def set_automation(
    cycle_id: UUID,
    body: AutomationUpdate,
    service: WaitlistService = Depends(get_waitlist_service),
):
    """Kill switch. Disabling halts automated promotion and sweeping for this cycle;
    re-enabling a rolled-out cycle refills seats vacated in the meantime.
    """
    return CycleResponse.from_entity(
        await service.set_automation(CycleId(cycle_id), body.enabled),
    )


@router.post("/{cycle_id}/close", response_model=CycleResponse)
async def close_cycle(
    cycle_id: UUID, service: WaitlistService = Depends(get_waitlist_service),
):
    return CycleResponse.from_entity(await service.close_cycle(CycleId(cycle_id)))


@router.post("/{cycle_id}/cancel", response_model=CycleResponse)
async def cancel_cycle(
    cycle_id: UUID, service: WaitlistService = Depends(get_waitlist_service),
):
    return CycleResponse.from_entity(await service.cancel_cycle(CycleId(cycle_id)))


@router.get("/{cycle_id}/stats")
async def get_stats(
    cycle_id: UUID, service: WaitlistService = Depends(get_waitlist_service),
):
    return await service.get_stats(CycleId(cycle_id))


@router.post(
    "/{cycle_id}/overrides", response_model=RegistrantResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_manual_override(
    cycle_id: UUID,
    body: OverrideCreate,
    service: WaitlistService = Depends(get_waitlist_service),
):
    """Invite an identity directly, outside queue order and capacity."""
    registrant = await service.add_manual_override(
        CycleId(cycle_id), IdentityRef(body.identity),
    )
    logger.warning(
        "Manual override issued",
        extra={"cycle_id": str(cycle_id), "registrant_id": str(registrant.id)},
    )
    return RegistrantResponse.from_entity(registrant)


@router.post(
    "/{cycle_id}/registrants", response_model=RegistrantResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register(
    cycle_id: UUID,
    body: RegisterRequest,
    service: WaitlistService = Depends(get_waitlist_service),
):
    """Join the queue while the registration window is open."""
    registrant = await service.register(CycleId(cycle_id), IdentityRef(body.identity))
    return RegistrantResponse.from_entity(registrant)


@router.post(
    "/{cycle_id}/priority-registrants", response_model=RegistrantResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register_priority(
    cycle_id: UUID,
    body: PriorityRegisterRequest,
    service: WaitlistService = Depends(get_waitlist_service),
):
    """Enroll an identity with a priority class. Same window and duplicate rules."""
    registrant = await service.register(
        CycleId(cycle_id), IdentityRef(body.identity), body.priority_class,
    )
    logger.info(
        f"Registered with priority class {body.priority_class.value}",
        extra={"cycle_id": str(cycle_id), "registrant_id": str(registrant.id)},
    )
    return RegistrantResponse.from_entity(registrant)
