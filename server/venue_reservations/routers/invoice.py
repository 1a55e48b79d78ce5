"""Invoice router: starts checkout of a resource or of several rooms of one type."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..core.clock import Clock
from ..core.config import Settings
from ..core.dependencies import (
    get_clock,
    get_member_id,
    get_payment_gateway,
    get_session_factory,
    get_settings,
    resolve_requester,
)
from ..core.exceptions import ProblemDetailsException
from ..schemas.common import Problem
from ..schemas.invoice import (
    CreateInvoiceRequest,
    CreateRoomInvoiceRequest,
    InvoiceResponse,
    RoomInvoiceResponse,
)
from ..services.invoice_service import InvoiceService
from ..services.payment_gateway import PaymentGateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/invoice", tags=["invoice"])

SESSION_FACTORY_DEPENDENCY = Depends(get_session_factory)
CLOCK_DEPENDENCY = Depends(get_clock)
SETTINGS_DEPENDENCY = Depends(get_settings)
GATEWAY_DEPENDENCY = Depends(get_payment_gateway)
MEMBER_DEPENDENCY = Depends(get_member_id)


PROBLEM_RESPONSES = {
    400: {"model": Problem, "description": "Request malformed for the resource kind"},
    404: {"model": Problem, "description": "Resource or room type not found"},
    409: {"model": Problem, "description": "Resource not available"},
    422: {"model": Problem, "description": "Request body failed validation"},
    502: {"model": Problem, "description": "Payment gateway failure"},
    503: {"model": Problem, "description": "Concurrent updates, try again"},
}


@router.post("/create", response_model=InvoiceResponse, responses=PROBLEM_RESPONSES)
async def create_invoice(
    request: CreateInvoiceRequest,
    session_factory: async_sessionmaker = SESSION_FACTORY_DEPENDENCY,
    clock: Clock = CLOCK_DEPENDENCY,
    settings: Settings = SETTINGS_DEPENDENCY,
    gateway: PaymentGateway = GATEWAY_DEPENDENCY,
    member_id: Optional[str] = MEMBER_DEPENDENCY,
) -> JSONResponse:
    """
    Check availability, hold the resource and generate an invoice.

    The invoice is due when the hold expires. Conflicts are 409 problems
    naming the conflicting entity; a gateway failure is a 502 problem and
    leaves no hold behind.
    """
    requester_id = resolve_requester(request.requester_id, member_id)
    service = InvoiceService(session_factory, clock, settings, gateway)

    try:
        response_data = await service.create_invoice(request, requester_id)

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in invoice creation",
            extra={
                "resource_id": str(request.resource_id),
                "requester_id": requester_id,
                "error": str(e)
            },
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e

    return JSONResponse(
        status_code=200,
        content=response_data.model_dump(mode="json")
    )


@router.post("/create-rooms", response_model=RoomInvoiceResponse, responses=PROBLEM_RESPONSES)
async def create_room_invoice(
    request: CreateRoomInvoiceRequest,
    session_factory: async_sessionmaker = SESSION_FACTORY_DEPENDENCY,
    clock: Clock = CLOCK_DEPENDENCY,
    settings: Settings = SETTINGS_DEPENDENCY,
    gateway: PaymentGateway = GATEWAY_DEPENDENCY,
    member_id: Optional[str] = MEMBER_DEPENDENCY,
) -> JSONResponse:
    """
    Hold several rooms of one type and generate a single invoice for them.

    Either every requested room is held or none is; too few free rooms is
    a 409 problem with code INSUFFICIENT_ROOMS.
    """
    requester_id = resolve_requester(request.requester_id, member_id)
    service = InvoiceService(session_factory, clock, settings, gateway)

    try:
        response_data = await service.create_room_invoice(request, requester_id)

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in room invoice creation",
            extra={
                "room_type": request.room_type,
                "room_count": request.room_count,
                "requester_id": requester_id,
                "error": str(e)
            },
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e

    return JSONResponse(
        status_code=200,
        content=response_data.model_dump(mode="json")
    )
