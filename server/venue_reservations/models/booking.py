"""Booking model definition."""

from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.database import Base
from .resource import TimeSlot

if TYPE_CHECKING:
    from .resource import Resource


class BookingStatus(str, Enum):
    """Booking status enumeration."""
    CONFIRMED = "CONFIRMED"
    CANCELED = "CANCELED"


class PaymentStatus(str, Enum):
    """Payment status of a booking."""
    PAID = "PAID"
    REFUNDED = "REFUNDED"


class Booking(Base):
    """
    Confirmed use of a resource.

    Rooms occupy the nights of [start_date, end_date). Halls and lawns occupy
    one slot on start_date. Photoshoots occupy [start_time, end_time) on
    start_date, with both times stored as naive UTC.
    """

    __tablename__ = "bookings"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    resource_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("resources.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Interval
    start_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    end_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    time_slot: Mapped[TimeSlot | None] = mapped_column(String(20), nullable=True)
    start_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Booking details
    member_ref: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    guest_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[BookingStatus] = mapped_column(
        String(20),
        nullable=False,
        default=BookingStatus.CONFIRMED,
        index=True
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        String(20),
        nullable=False,
        default=PaymentStatus.PAID
    )

    # Invoice that paid for this booking; a multi-room invoice pays for several
    invoice_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
        onupdate=func.now()
    )

    # Constraints
    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="ck_booking_dates"),
        CheckConstraint("guest_count >= 0", name="ck_booking_guest_count_non_negative"),
        CheckConstraint("total_amount >= 0", name="ck_booking_total_non_negative"),
        CheckConstraint("status IN ('CONFIRMED', 'CANCELED')", name="ck_booking_status"),
        CheckConstraint(
            "start_time IS NULL OR end_time IS NULL OR end_time > start_time",
            name="ck_booking_times"
        ),
        UniqueConstraint("invoice_id", "resource_id", name="uq_booking_invoice_resource"),
        # One confirmed booking per resource, day and slot
        Index(
            "uq_booking_resource_day_slot",
            "resource_id",
            "start_date",
            "time_slot",
            unique=True,
            postgresql_where=text("status = 'CONFIRMED' AND time_slot IS NOT NULL"),
            sqlite_where=text("status = 'CONFIRMED' AND time_slot IS NOT NULL"),
        ),
    )

    resource: Mapped["Resource"] = relationship("Resource", back_populates="bookings")

    @property
    def is_confirmed(self) -> bool:
        return self.status == BookingStatus.CONFIRMED

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, resource_id={self.resource_id}, "
            f"start_date={self.start_date}, end_date={self.end_date}, "
            f"time_slot={self.time_slot}, status={self.status})>"
        )
