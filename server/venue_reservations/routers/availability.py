"""Availability router."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock
from ..core.config import Settings
from ..core.dependencies import get_clock, get_db, get_member_id, get_settings
from ..schemas.availability import AvailabilityResponse, CheckAvailabilityRequest
from ..services.availability import AvailabilityService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/availability", tags=["availability"])

DB_DEPENDENCY = Depends(get_db)
CLOCK_DEPENDENCY = Depends(get_clock)
SETTINGS_DEPENDENCY = Depends(get_settings)
MEMBER_DEPENDENCY = Depends(get_member_id)


@router.post("/check", response_model=AvailabilityResponse)
async def check_availability(
    request: CheckAvailabilityRequest,
    db: AsyncSession = DB_DEPENDENCY,
    clock: Clock = CLOCK_DEPENDENCY,
    settings: Settings = SETTINGS_DEPENDENCY,
    member_id: Optional[str] = MEMBER_DEPENDENCY,
) -> JSONResponse:
    """
    Check whether a resource is free for an interval.

    Conflicts are reported in the body with `available=false`; only unknown
    resources and malformed requests produce error responses.
    """
    requester_id = member_id or request.requester_id
    service = AvailabilityService(db, clock, settings)
    resource, _, result = await service.check(request, requester_id)

    response_data = AvailabilityResponse(
        resource_id=str(resource.id),
        available=result.available,
        reason=result.reason,
        message=result.message,
        conflicting_entity=result.conflicting_entity,
    )

    return JSONResponse(
        status_code=200,
        content=response_data.model_dump(mode="json")
    )
