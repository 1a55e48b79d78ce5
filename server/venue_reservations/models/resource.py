"""Resource model definition."""

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, Integer, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.database import Base

if TYPE_CHECKING:
    from .booking import Booking
    from .hold import Hold
    from .maintenance import MaintenanceWindow
    from .reservation import Reservation


class ResourceKind(str, Enum):
    """Kinds of bookable venue resources."""
    ROOM = "ROOM"
    HALL = "HALL"
    LAWN = "LAWN"
    PHOTOSHOOT = "PHOTOSHOOT"

    @property
    def uses_date_range(self) -> bool:
        """Rooms are booked by check-in/check-out range, everything else by day."""
        return self is ResourceKind.ROOM

    @property
    def uses_time_slot(self) -> bool:
        """Halls and lawns are booked per day part."""
        return self in (ResourceKind.HALL, ResourceKind.LAWN)

    @property
    def status_flag(self) -> str:
        """Name of the flag the scheduler derives from maintenance windows."""
        return "is_out_of_service" if self is ResourceKind.LAWN else "is_active"


class TimeSlot(str, Enum):
    """Day parts for slot-based resources."""
    MORNING = "MORNING"
    EVENING = "EVENING"
    NIGHT = "NIGHT"


TIME_SLOT_LABELS = {
    TimeSlot.MORNING: "Morning (8:00 AM - 2:00 PM)",
    TimeSlot.EVENING: "Evening (2:00 PM - 8:00 PM)",
    TimeSlot.NIGHT: "Night (8:00 PM - 12:00 AM)",
}


class PricingType(str, Enum):
    """Price tier selector."""
    MEMBER = "member"
    GUEST = "guest"


class Resource(Base):
    """A bookable unit: a room, hall, lawn or photoshoot service."""

    __tablename__ = "resources"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Catalog details
    kind: Mapped[ResourceKind] = mapped_column(String(20), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # Rooms of one type are interchangeable for multi-room checkout
    room_type: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    min_guests: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_guests: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Prices in minor units
    member_price: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    guest_price: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="PKR")

    # Status flags derived by the reconciliation scheduler
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    is_out_of_service: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    is_reserved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

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
        CheckConstraint("kind IN ('ROOM', 'HALL', 'LAWN', 'PHOTOSHOOT')", name="ck_resource_kind"),
        CheckConstraint("min_guests >= 0", name="ck_resource_min_guests_non_negative"),
        CheckConstraint(
            "max_guests IS NULL OR max_guests >= min_guests",
            name="ck_resource_guest_bounds"
        ),
        CheckConstraint("member_price >= 0", name="ck_resource_member_price_non_negative"),
        CheckConstraint("guest_price >= 0", name="ck_resource_guest_price_non_negative"),
        CheckConstraint("length(currency) = 3", name="ck_resource_currency_length"),
    )

    # Relationships
    maintenance_windows: Mapped[list["MaintenanceWindow"]] = relationship(
        "MaintenanceWindow",
        back_populates="resource",
        cascade="all, delete-orphan"
    )
    reservations: Mapped[list["Reservation"]] = relationship(
        "Reservation",
        back_populates="resource",
        cascade="all, delete-orphan"
    )
    bookings: Mapped[list["Booking"]] = relationship(
        "Booking",
        back_populates="resource",
        cascade="all, delete-orphan"
    )
    hold: Mapped["Hold | None"] = relationship(
        "Hold",
        back_populates="resource",
        cascade="all, delete-orphan",
        uselist=False
    )

    def price_for(self, pricing_type: PricingType) -> int:
        """Unit price for the selected tier."""
        if pricing_type == PricingType.MEMBER:
            return self.member_price
        return self.guest_price

    def __repr__(self) -> str:
        return (
            f"<Resource(id={self.id}, kind={self.kind}, name='{self.name}', "
            f"is_active={self.is_active}, is_out_of_service={self.is_out_of_service})>"
        )
