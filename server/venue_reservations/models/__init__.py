"""Models module exporting all database models."""

from .booking import Booking, BookingStatus, PaymentStatus
from .hold import Hold
from .invoice import Invoice, InvoiceItem, InvoiceStatus
from .maintenance import MaintenanceWindow
from .reservation import Reservation
from .resource import TIME_SLOT_LABELS, PricingType, Resource, ResourceKind, TimeSlot

__all__ = [
    # Catalog
    "Resource",
    "ResourceKind",
    "TimeSlot",
    "TIME_SLOT_LABELS",
    "PricingType",

    # Blocking entities
    "MaintenanceWindow",
    "Reservation",
    "Hold",

    # Booking entities
    "Booking",
    "BookingStatus",
    "PaymentStatus",

    # Payment entities
    "Invoice",
    "InvoiceItem",
    "InvoiceStatus",
]
