"""Invoice model definition."""

from datetime import date, datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base
from .resource import PricingType, ResourceKind, TimeSlot


class InvoiceStatus(str, Enum):
    """Invoice status enumeration."""
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"


class Invoice(Base):
    """
    Payment request issued while holds are in place.

    The requested interval is copied onto the invoice so the payment
    callback can finalize the booking without the original request. Every
    held resource has an InvoiceItem; `resource_id` is the first of them.
    Multi-room invoices also record the room type and count they were
    created for.
    """

    __tablename__ = "invoices"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    invoice_number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    resource_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("resources.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    resource_kind: Mapped[ResourceKind] = mapped_column(String(20), nullable=False)
    member_ref: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    room_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    room_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Requested interval
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    time_slot: Mapped[TimeSlot | None] = mapped_column(String(20), nullable=True)
    start_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    guest_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Amount
    pricing_type: Mapped[PricingType] = mapped_column(String(10), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    due_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    # Settlement
    status: Mapped[InvoiceStatus] = mapped_column(
        String(20),
        nullable=False,
        default=InvoiceStatus.PENDING,
        index=True
    )
    consumer_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    transaction_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
        onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_invoice_amount_non_negative"),
        CheckConstraint("status IN ('PENDING', 'PAID', 'FAILED')", name="ck_invoice_status"),
        CheckConstraint("pricing_type IN ('member', 'guest')", name="ck_invoice_pricing_type"),
        CheckConstraint("room_count >= 1", name="ck_invoice_room_count_positive"),
    )

    def __repr__(self) -> str:
        return (
            f"<Invoice(id={self.id}, invoice_number='{self.invoice_number}', "
            f"resource_id={self.resource_id}, amount={self.amount}, status={self.status})>"
        )


class InvoiceItem(Base):
    """One resource held for an invoice, with its share of amount and guests."""

    __tablename__ = "invoice_items"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    invoice_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    resource_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("resources.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    guest_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("invoice_id", "resource_id", name="uq_invoice_item_resource"),
        CheckConstraint("amount >= 0", name="ck_invoice_item_amount_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<InvoiceItem(invoice_id={self.invoice_id}, resource_id={self.resource_id}, amount={self.amount})>"
