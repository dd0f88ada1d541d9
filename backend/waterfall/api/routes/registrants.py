"""Registrant Routes — lookup, invitation response (accept/decline), event-day check-in.

Invariants:
    - Repeating an accept or decline that already holds returns 200 with the same record
    - A late response returns 409 INVALID_TRANSITION and changes nothing
"""

from uuid import UUID

from fastapi import APIRouter, Depends

from waterfall.api.dependencies import get_waitlist_service
from waterfall.core.domain_types import Decision, RegistrantId
from waterfall.schemas.registrant import RegistrantResponse, RespondRequest
from waterfall.services.waitlist_service import WaitlistService

router = APIRouter(prefix="/api/v1/registrants", tags=["registrants"])


@router.get("/{registrant_id}", response_model=RegistrantResponse)
async def get_registrant(
    registrant_id: UUID, service: WaitlistService = Depends(get_waitlist_service),
):
    return RegistrantResponse.from_entity(
        await service.get_registrant(RegistrantId(registrant_id)),
    )


@router.post("/{registrant_id}/respond", response_model=RegistrantResponse)
async def respond(
    registrant_id: UUID,
    body: RespondRequest,
    service: WaitlistService = Depends(get_waitlist_service),
):
    """Accept or decline an invitation; decline on a confirmed seat releases it."""
    registrant = await service.respond(
        RegistrantId(registrant_id), Decision(body.decision),
    )
    return RegistrantResponse.from_entity(registrant)


@router.post("/{registrant_id}/check-in", response_model=RegistrantResponse)
async def check_in(
    registrant_id: UUID, service: WaitlistService = Depends(get_waitlist_service),
):
    return RegistrantResponse.from_entity(
        await service.check_in(RegistrantId(registrant_id)),
    )
