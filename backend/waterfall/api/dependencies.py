"""API Dependencies — FastAPI provider for the waitlist service.

Invariants:
    - The WaitlistService is built once in the lifespan and lives on app.state
    - Routes obtain it only through get_waitlist_service (tests override this provider)
"""

from fastapi import Request

from waterfall.services.waitlist_service import WaitlistService


def get_waitlist_service(request: Request) -> WaitlistService:
    return request.app.state.waitlist_service
