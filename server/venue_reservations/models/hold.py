"""Hold model definition."""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.database import Base

if TYPE_CHECKING:
    from .resource import Resource


class Hold(Base):
    """
    Short-lived exclusive claim on a resource.

    There is at most one row per resource. A hold is active only while
    `on_hold` is set and `hold_expiry` lies in the future; an expired hold
    that the scheduler has not cleared yet grants nothing.
    """

    __tablename__ = "holds"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    resource_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("resources.id", ondelete="CASCADE"),
        nullable=False,
        unique=True
    )

    on_hold: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    hold_expiry: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    hold_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    acquired_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
        onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "on_hold = false OR (hold_expiry IS NOT NULL AND hold_by IS NOT NULL)",
            name="ck_hold_active_fields"
        ),
    )

    resource: Mapped["Resource"] = relationship("Resource", back_populates="hold")

    def is_active(self, now: datetime) -> bool:
        """Check if the hold still excludes other requesters at `now`."""
        return bool(self.on_hold and self.hold_expiry is not None and self.hold_expiry > now)

    def __repr__(self) -> str:
        return (
            f"<Hold(resource_id={self.resource_id}, on_hold={self.on_hold}, "
            f"hold_by={self.hold_by}, hold_expiry={self.hold_expiry})>"
        )
