"""Payment router receiving gateway callbacks."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..core.clock import Clock
from ..core.config import Settings
from ..core.dependencies import get_clock, get_session_factory, get_settings
from ..core.exceptions import ProblemDetailsException
from ..models.booking import BookingStatus, PaymentStatus
from ..schemas.invoice import Booking, PaymentCallbackRequest, PaymentCallbackResponse
from ..services.booking_finalizer import BookingFinalizer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/payment", tags=["payment"])

SESSION_FACTORY_DEPENDENCY = Depends(get_session_factory)
CLOCK_DEPENDENCY = Depends(get_clock)
SETTINGS_DEPENDENCY = Depends(get_settings)


def _convert_booking_to_schema(booking_model) -> Booking:
    """Convert booking model to schema."""
    return Booking(
        id=str(booking_model.id),
        resource_id=str(booking_model.resource_id),
        start_date=booking_model.start_date,
        end_date=booking_model.end_date,
        time_slot=booking_model.time_slot,
        start_time=booking_model.start_time,
        end_time=booking_model.end_time,
        member_ref=booking_model.member_ref,
        guest_count=booking_model.guest_count,
        total_amount=booking_model.total_amount,
        status=BookingStatus(booking_model.status).value,
        payment_status=PaymentStatus(booking_model.payment_status).value,
    )


@router.post("/callback", response_model=PaymentCallbackResponse)
async def payment_callback(
    request: PaymentCallbackRequest,
    session_factory: async_sessionmaker = SESSION_FACTORY_DEPENDENCY,
    clock: Clock = CLOCK_DEPENDENCY,
    settings: Settings = SETTINGS_DEPENDENCY,
) -> JSONResponse:
    """
    Settle an invoice reported by the payment gateway.

    Success confirms one booking per held resource; failure releases the
    holds. Success callbacks may be repeated and return the same bookings.
    Payments that arrive after the invoice was due are rejected with a 409.
    """
    finalizer = BookingFinalizer(session_factory, clock, settings)

    try:
        invoice, bookings = await finalizer.handle_callback(request)

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in payment callback",
            extra={
                "invoice_number": request.invoice_number,
                "payment_status": request.status.value,
                "error": str(e)
            },
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e

    response_data = PaymentCallbackResponse(
        invoice_number=invoice.invoice_number,
        invoice_status=invoice.status,
        booking=_convert_booking_to_schema(bookings[0]) if bookings else None,
        bookings=[_convert_booking_to_schema(booking) for booking in bookings],
    )
    return JSONResponse(
        status_code=200,
        content=response_data.model_dump(mode="json")
    )
