"""Invoice and payment Pydantic schemas."""

from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from ..models.invoice import InvoiceStatus
from ..models.resource import PricingType, ResourceKind, TimeSlot
from .availability import BookingIntervalRequest
from .common import Money


class CreateInvoiceRequest(BookingIntervalRequest):
    """Request schema for starting checkout of a resource."""

    pricing_type: PricingType = Field(PricingType.MEMBER, description="Member or guest price tier")


class CreateRoomInvoiceRequest(BaseModel):
    """Request schema for checking out several rooms of one type."""

    room_type: str = Field(..., min_length=1, max_length=64, description="Room type to book")
    room_count: int = Field(1, ge=1, le=20, description="Number of rooms")
    requester_id: Optional[str] = Field(
        None,
        min_length=1,
        max_length=128,
        description="Member reference, used when no X-Member-Id header is sent"
    )
    start_date: date = Field(..., description="Check-in day")
    end_date: date = Field(..., description="Check-out day (exclusive)")
    guest_count: Optional[int] = Field(None, ge=0, le=10000, description="Guests across all rooms")
    pricing_type: PricingType = Field(PricingType.MEMBER, description="Member or guest price tier")


class BookingSummary(BaseModel):
    """What the invoice pays for."""

    resource_id: str
    resource_name: str
    kind: ResourceKind
    start_date: date
    end_date: date
    time_slot: Optional[TimeSlot] = None
    time_slot_label: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    guest_count: int = 0


class InvoiceResponse(BaseModel):
    """Invoice descriptor returned to the member."""

    invoice_id: str = Field(..., description="Invoice ID")
    invoice_number: str = Field(..., description="Number the gateway uses to call back")
    consumer_number: Optional[str] = Field(None, description="Number the member pays against")
    status: InvoiceStatus
    amount: Money
    due_at: datetime = Field(..., description="Payment deadline, equal to the hold expiry (UTC)")
    payment_channels: List[str]
    booking_summary: BookingSummary


class RoomGroupSummary(BaseModel):
    """What a multi-room invoice pays for."""

    room_type: str
    start_date: date
    end_date: date
    nights: int
    room_count: int
    guest_count: int = 0
    hold_expires_at: datetime
    rooms: List[BookingSummary]


class RoomInvoiceResponse(BaseModel):
    """Invoice descriptor for a multi-room checkout."""

    invoice_id: str
    invoice_number: str
    consumer_number: Optional[str] = None
    status: InvoiceStatus
    amount: Money
    due_at: datetime
    payment_channels: List[str]
    booking_summary: RoomGroupSummary


class PaymentOutcome(str, Enum):
    """Payment result reported by the gateway."""
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class PaymentCallbackRequest(BaseModel):
    """Callback sent by the payment gateway."""

    invoice_number: str = Field(..., min_length=1, max_length=64)
    status: PaymentOutcome
    transaction_id: Optional[str] = Field(None, max_length=128)


class Booking(BaseModel):
    """Booking response schema."""

    id: str
    resource_id: str
    start_date: date
    end_date: date
    time_slot: Optional[TimeSlot] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    member_ref: str
    guest_count: int
    total_amount: int
    status: str
    payment_status: str


class PaymentCallbackResponse(BaseModel):
    """Outcome of a payment callback."""

    invoice_number: str
    invoice_status: InvoiceStatus
    booking: Optional[Booking] = Field(None, description="First booking made for the invoice")
    bookings: List[Booking] = Field(default_factory=list, description="Every booking made for the invoice")
