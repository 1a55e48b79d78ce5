"""Admin reservation model definition."""

from datetime import date, datetime
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, ForeignKey, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.database import Base
from .resource import TimeSlot

if TYPE_CHECKING:
    from .resource import Resource


class Reservation(Base):
    """
    Manual block of a resource issued by an admin.

    `reserved_to` is exclusive. `time_slot` is only set for slot-based
    resources; an unset slot blocks the whole day.
    """

    __tablename__ = "reservations"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    resource_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("resources.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    reserved_from: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    reserved_to: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    time_slot: Mapped[TimeSlot | None] = mapped_column(String(20), nullable=True)
    reserved_by: Mapped[str] = mapped_column(String(128), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("reserved_to > reserved_from", name="ck_reservation_dates"),
        CheckConstraint("length(reserved_by) > 0", name="ck_reservation_reserved_by_not_empty"),
    )

    resource: Mapped["Resource"] = relationship("Resource", back_populates="reservations")

    def __repr__(self) -> str:
        return (
            f"<Reservation(id={self.id}, resource_id={self.resource_id}, "
            f"reserved_from={self.reserved_from}, reserved_to={self.reserved_to}, "
            f"time_slot={self.time_slot})>"
        )
