"""Availability-related Pydantic schemas."""

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from ..models.resource import TimeSlot


class ConflictReason(str, Enum):
    """Why a resource is not available."""
    INACTIVE = "INACTIVE"
    MAINTENANCE = "MAINTENANCE"
    HOLD = "HOLD"
    RESERVATION = "RESERVATION"
    BOOKING = "BOOKING"
    CAPACITY = "CAPACITY"


class BookingIntervalRequest(BaseModel):
    """
    Requested use of a resource.

    Rooms take `start_date` and `end_date` (check-out, exclusive). Halls and
    lawns take `start_date` and `time_slot`. Photoshoots take `start_time`
    in venue-local time.
    """

    resource_id: UUID = Field(..., description="Resource to book")
    requester_id: Optional[str] = Field(
        None,
        min_length=1,
        max_length=128,
        description="Member reference, used when no X-Member-Id header is sent"
    )
    start_date: Optional[date] = Field(None, description="First day (check-in for rooms)")
    end_date: Optional[date] = Field(None, description="Check-out day for rooms (exclusive)")
    time_slot: Optional[TimeSlot] = Field(None, description="Day part for halls and lawns")
    start_time: Optional[datetime] = Field(None, description="Photoshoot start (venue-local)")
    guest_count: Optional[int] = Field(None, ge=0, le=10000, description="Expected guests")


class CheckAvailabilityRequest(BookingIntervalRequest):
    """Request schema for an availability check."""


class AvailabilityResponse(BaseModel):
    """Result of an availability check."""

    resource_id: str = Field(..., description="Checked resource")
    available: bool = Field(..., description="Whether the interval can be booked")
    reason: Optional[ConflictReason] = Field(None, description="First conflict found")
    message: Optional[str] = Field(None, description="Human-readable explanation")
    conflicting_entity: Optional[Dict[str, Any]] = Field(None, description="Record that caused the conflict")
