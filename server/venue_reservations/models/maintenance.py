"""Maintenance window model definition."""

from datetime import date, datetime
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, ForeignKey, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.database import Base

if TYPE_CHECKING:
    from .resource import Resource


class MaintenanceWindow(Base):
    """Admin-declared out-of-order period. Both dates are inclusive."""

    __tablename__ = "maintenance_windows"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    resource_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("resources.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    start_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    end_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="ck_maintenance_window_dates"),
    )

    resource: Mapped["Resource"] = relationship("Resource", back_populates="maintenance_windows")

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def intersects(self, start: date, end: date) -> bool:
        """True if the window touches any day in the half-open range [start, end)."""
        return self.start_date < end and self.end_date >= start

    def __repr__(self) -> str:
        return (
            f"<MaintenanceWindow(id={self.id}, resource_id={self.resource_id}, "
            f"start_date={self.start_date}, end_date={self.end_date})>"
        )
