"""Hold router for acquiring, releasing and inspecting holds."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.clock import Clock
from ..core.config import Settings
from ..core.database import run_in_transaction
from ..core.dependencies import (
    get_clock,
    get_db,
    get_member_id,
    get_session_factory,
    get_settings,
    resolve_requester,
)
from ..schemas.common import Problem
from ..schemas.hold import (
    AcquireHoldRequest,
    GetHoldRequest,
    GetHoldResponse,
    Hold,
    ReleaseHoldRequest,
    ReleaseHoldResponse,
)
from ..services.hold_service import HoldService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/hold", tags=["hold"])

DB_DEPENDENCY = Depends(get_db)
SESSION_FACTORY_DEPENDENCY = Depends(get_session_factory)
CLOCK_DEPENDENCY = Depends(get_clock)
SETTINGS_DEPENDENCY = Depends(get_settings)
MEMBER_DEPENDENCY = Depends(get_member_id)


def _convert_hold_to_schema(hold_model) -> Hold:
    """Convert hold model to schema."""
    return Hold(
        resource_id=str(hold_model.resource_id),
        hold_by=hold_model.hold_by,
        hold_expiry=hold_model.hold_expiry,
        acquired_at=hold_model.acquired_at,
    )


@router.post("/acquire", response_model=Hold, responses={409: {"model": Problem}, 503: {"model": Problem}})
async def acquire_hold(
    request: AcquireHoldRequest,
    session_factory: async_sessionmaker = SESSION_FACTORY_DEPENDENCY,
    clock: Clock = CLOCK_DEPENDENCY,
    settings: Settings = SETTINGS_DEPENDENCY,
    member_id: Optional[str] = MEMBER_DEPENDENCY,
) -> JSONResponse:
    """
    Acquire a hold, or extend the requester's own hold.

    Another requester's active hold is reported as a 409 problem.
    """
    requester_id = resolve_requester(request.requester_id, member_id)

    async def acquire(db: AsyncSession):
        return await HoldService(db, clock, settings).acquire_hold(
            request.resource_id, requester_id, request.ttl_seconds
        )

    hold = await run_in_transaction(
        session_factory,
        acquire,
        operation="acquire_hold",
        max_attempts=settings.request_max_attempts,
    )

    response_data = _convert_hold_to_schema(hold)
    return JSONResponse(
        status_code=200,
        content=response_data.model_dump(mode="json")
    )


@router.post("/release", response_model=ReleaseHoldResponse, responses={409: {"model": Problem}})
async def release_hold(
    request: ReleaseHoldRequest,
    session_factory: async_sessionmaker = SESSION_FACTORY_DEPENDENCY,
    clock: Clock = CLOCK_DEPENDENCY,
    settings: Settings = SETTINGS_DEPENDENCY,
    member_id: Optional[str] = MEMBER_DEPENDENCY,
) -> JSONResponse:
    """Release the requester's own hold."""
    requester_id = resolve_requester(request.requester_id, member_id)

    async def release(db: AsyncSession) -> bool:
        return await HoldService(db, clock, settings).release_hold(request.resource_id, requester_id)

    released = await run_in_transaction(
        session_factory,
        release,
        operation="release_hold",
        max_attempts=settings.request_max_attempts,
    )

    response_data = ReleaseHoldResponse(resource_id=str(request.resource_id), released=released)
    return JSONResponse(
        status_code=200,
        content=response_data.model_dump(mode="json")
    )


@router.post("/get", response_model=GetHoldResponse)
async def get_hold(
    request: GetHoldRequest,
    db: AsyncSession = DB_DEPENDENCY,
    clock: Clock = CLOCK_DEPENDENCY,
    settings: Settings = SETTINGS_DEPENDENCY,
) -> JSONResponse:
    """Get the active hold on a resource, if any."""
    service = HoldService(db, clock, settings)
    await service.get_resource(request.resource_id)
    hold = await service.find_active_hold(request.resource_id)

    response_data = GetHoldResponse(
        resource_id=str(request.resource_id),
        hold=_convert_hold_to_schema(hold) if hold else None,
    )
    return JSONResponse(
        status_code=200,
        content=response_data.model_dump(mode="json")
    )
