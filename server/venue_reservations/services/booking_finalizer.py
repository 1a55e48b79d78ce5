"""Booking finalizer: turns payment callbacks into confirmed bookings."""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import List, Optional, Sequence, Tuple, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.clock import Clock
from ..core.config import Settings
from ..core.database import lock_resource, run_in_transaction
from ..core.exceptions import ConflictError, NotFoundError
from ..core.observability import metrics_collector
from ..models.booking import Booking, BookingStatus, PaymentStatus
from ..models.invoice import Invoice, InvoiceItem, InvoiceStatus
from ..models.resource import Resource, ResourceKind, TimeSlot
from ..schemas.availability import ConflictReason
from ..schemas.invoice import PaymentCallbackRequest, PaymentOutcome
from .availability import AvailabilityResult, AvailabilityService, RequestedInterval
from .hold_service import HoldService

logger = logging.getLogger(__name__)


async def get_invoice_by_number(db: AsyncSession, invoice_number: str) -> Invoice:
    """
    Get an invoice by its number.

    Raises:
        NotFoundError: If the invoice does not exist
    """
    result = await db.execute(select(Invoice).where(Invoice.invoice_number == invoice_number))
    invoice = result.scalar_one_or_none()
    if invoice is None:
        raise NotFoundError(resource_type="invoice", resource_id=invoice_number)
    return invoice


async def get_invoice_items(db: AsyncSession, invoice: Invoice) -> List[InvoiceItem]:
    """Held resources of an invoice, in lock order."""
    result = await db.execute(
        select(InvoiceItem).where(InvoiceItem.invoice_id == invoice.id).order_by(InvoiceItem.resource_id)
    )
    return list(result.scalars().all())


async def get_invoice_bookings(db: AsyncSession, invoice: Invoice) -> List[Booking]:
    result = await db.execute(
        select(Booking).where(Booking.invoice_id == invoice.id).order_by(Booking.resource_id)
    )
    return list(result.scalars().all())


def interval_from_invoice(invoice: Invoice, clock: Clock) -> RequestedInterval:
    """Rebuild the requested interval stored on an invoice."""
    return RequestedInterval(
        kind=ResourceKind(invoice.resource_kind),
        start_date=invoice.start_date,
        end_date=invoice.end_date,
        time_slot=TimeSlot(invoice.time_slot) if invoice.time_slot else None,
        start_time=invoice.start_time,
        end_time=invoice.end_time,
        local_start_hour=clock.to_local(invoice.start_time).hour if invoice.start_time else None,
        guest_count=invoice.guest_count,
    )


class InvoiceAlreadySettledError(ConflictError):
    """Payment success reported for an invoice that already failed."""

    def __init__(self, invoice_number: str, status: str):
        super().__init__(detail=f"Invoice {invoice_number} is already {status}")
        self.problem_details.update({
            "code": "INVOICE_SETTLED",
            "invoice_number": invoice_number,
            "invoice_status": status,
        })


class InvoiceExpiredError(ConflictError):
    """Payment success reported after the invoice was due or the stay began."""

    def __init__(self, invoice_number: str, due_at: datetime, detail: str):
        super().__init__(detail=detail)
        self.problem_details.update({
            "code": "INVOICE_EXPIRED",
            "invoice_number": invoice_number,
            "due_at": due_at.isoformat() + "Z",
        })


@dataclass(frozen=True)
class FinalizeConflict:
    """A held resource that failed its re-check at payment time."""

    resource: Resource
    result: AvailabilityResult


class BookingFinalizer:
    """
    Service that settles invoices reported by the payment gateway.

    Success re-runs the availability check inside the finalizing
    transaction with the invoice owner as requester, inserts one confirmed
    booking per held resource, releases the holds and marks the invoice
    paid. A payment that arrives at or after the invoice's due time is
    rejected even if the resources are still free. Any conflict, including
    a unique index violation from a concurrent booking, fails the invoice
    and releases the holds instead.
    """

    def __init__(self, session_factory: async_sessionmaker, clock: Clock, settings: Settings):
        self.session_factory = session_factory
        self.clock = clock
        self.settings = settings

    async def _transaction(self, work, operation: str):
        return await run_in_transaction(
            self.session_factory,
            work,
            operation=operation,
            max_attempts=self.settings.request_max_attempts,
        )

    async def handle_callback(self, request: PaymentCallbackRequest) -> Tuple[Invoice, List[Booking]]:
        """Dispatch a gateway callback to the success or failure path."""
        if request.status == PaymentOutcome.SUCCESS:
            return await self.finalize_success(request.invoice_number, request.transaction_id)

        invoice = await self.finalize_failure(request.invoice_number, request.transaction_id)
        return invoice, []

    def _expiry_problem(self, invoice: Invoice, interval: RequestedInterval) -> Optional[InvoiceExpiredError]:
        now = self.clock.now()
        if invoice.due_at <= now:
            return InvoiceExpiredError(
                invoice.invoice_number,
                invoice.due_at,
                f"Payment for invoice {invoice.invoice_number} arrived after it was due",
            )

        if interval.start_time is not None:
            started = interval.start_time <= now
        else:
            started = interval.start_date < self.clock.today()
        if started:
            return InvoiceExpiredError(
                invoice.invoice_number,
                invoice.due_at,
                f"The booking paid for by invoice {invoice.invoice_number} has already started",
            )
        return None

    async def finalize_success(
        self,
        invoice_number: str,
        transaction_id: Optional[str] = None,
    ) -> Tuple[Invoice, List[Booking]]:
        """
        Confirm the bookings paid for by an invoice.

        Repeated success callbacks return the bookings created by the first.

        Raises:
            NotFoundError: If the invoice does not exist
            InvoiceAlreadySettledError: If the invoice already failed
            InvoiceExpiredError: If the payment came too late; the invoice is failed
            AvailabilityConflictError: If a resource was taken meanwhile
        """

        async def confirm(db: AsyncSession) -> Tuple[Invoice, Union[List[Booking], FinalizeConflict, InvoiceExpiredError]]:
            invoice = await get_invoice_by_number(db, invoice_number)

            if invoice.status == InvoiceStatus.PAID:
                return invoice, await get_invoice_bookings(db, invoice)
            if invoice.status == InvoiceStatus.FAILED:
                raise InvoiceAlreadySettledError(invoice_number, invoice.status)

            items = await get_invoice_items(db, invoice)
            interval = interval_from_invoice(invoice, self.clock)

            # The failed status must commit, so the error is raised after the transaction
            expired = self._expiry_problem(invoice, interval)
            if expired is not None:
                await self._release_holds(db, invoice, items, reason="payment_timeout")
                self._mark_failed(invoice, transaction_id, reason="payment_timeout")
                return invoice, expired

            availability = AvailabilityService(db, self.clock, self.settings)
            checked = []
            for item in items:
                await lock_resource(db, item.resource_id)
                resource = await db.get(Resource, item.resource_id)
                # Zero means no guest count was given at checkout
                item_interval = replace(interval, guest_count=item.guest_count or None)
                result = await availability.check_interval(resource, item_interval, invoice.member_ref)
                if not result.available:
                    return invoice, FinalizeConflict(resource, result)
                checked.append((item, item_interval))

            bookings = [
                Booking(
                    resource_id=item.resource_id,
                    start_date=item_interval.start_date,
                    end_date=item_interval.end_date,
                    time_slot=invoice.time_slot,
                    start_time=invoice.start_time,
                    end_time=invoice.end_time,
                    member_ref=invoice.member_ref,
                    guest_count=item.guest_count,
                    total_amount=item.amount,
                    status=BookingStatus.CONFIRMED,
                    payment_status=PaymentStatus.PAID,
                    invoice_id=invoice.id,
                )
                for item, item_interval in checked
            ]
            db.add_all(bookings)
            await db.flush()

            await self._release_holds(db, invoice, items, reason="booked")
            invoice.status = InvoiceStatus.PAID
            invoice.transaction_id = transaction_id
            return invoice, bookings

        try:
            invoice, outcome = await self._transaction(confirm, "finalize_booking")
        except IntegrityError as e:
            logger.warning(
                "Booking insert lost to a concurrent booking",
                extra={"invoice_number": invoice_number, "error": str(e.orig)},
            )
            outcome = None

        if isinstance(outcome, list):
            metrics_collector.record_booking_finalized("confirmed")
            logger.info(
                "Booking confirmed",
                extra={
                    "invoice_number": invoice_number,
                    "booking_ids": [str(booking.id) for booking in outcome],
                    "resource_ids": [str(booking.resource_id) for booking in outcome],
                    "member_ref": invoice.member_ref,
                },
            )
            return invoice, outcome

        if isinstance(outcome, InvoiceExpiredError):
            metrics_collector.record_booking_finalized("expired")
            logger.info(
                "Late payment rejected",
                extra={"invoice_number": invoice_number, "due_at": invoice.due_at.isoformat()},
            )
            raise outcome

        invoice, resource = await self._fail_invoice(invoice_number, transaction_id, reason="booking_conflict")
        if invoice.status == InvoiceStatus.PAID:
            # A concurrent callback for the same invoice confirmed it first
            return await self._paid_bookings(invoice_number)

        metrics_collector.record_booking_finalized("conflict")
        if outcome is None:
            outcome = FinalizeConflict(
                resource,
                AvailabilityResult.conflict(
                    ConflictReason.BOOKING,
                    "The resource was booked by someone else while payment was pending",
                ),
            )
        outcome.result.raise_for_conflict(outcome.resource)

    async def finalize_failure(self, invoice_number: str, transaction_id: Optional[str] = None) -> Invoice:
        """
        Record a failed or timed out payment.

        Releases the member's holds and fails the invoice. No booking is made.

        Raises:
            NotFoundError: If the invoice does not exist
        """
        invoice, _ = await self._fail_invoice(invoice_number, transaction_id, reason="payment_failed")
        metrics_collector.record_booking_finalized("payment_failed")
        return invoice

    async def _paid_bookings(self, invoice_number: str) -> Tuple[Invoice, List[Booking]]:
        async def load(db: AsyncSession) -> Tuple[Invoice, List[Booking]]:
            invoice = await get_invoice_by_number(db, invoice_number)
            return invoice, await get_invoice_bookings(db, invoice)

        return await self._transaction(load, "load_paid_invoice")

    async def _release_holds(self, db: AsyncSession, invoice: Invoice, items: Sequence[InvoiceItem], reason: str) -> None:
        holds = HoldService(db, self.clock, self.settings)
        for item in items:
            await holds.release_if_held_by(item.resource_id, invoice.member_ref, reason=reason)

    def _mark_failed(self, invoice: Invoice, transaction_id: Optional[str], reason: str) -> None:
        invoice.status = InvoiceStatus.FAILED
        invoice.transaction_id = transaction_id
        logger.info(
            "Invoice failed",
            extra={"invoice_number": invoice.invoice_number, "reason": reason},
        )

    async def _fail_invoice(self, invoice_number: str, transaction_id: Optional[str], reason: str) -> Tuple[Invoice, Resource]:
        """Release the invoice owner's holds and mark a pending invoice failed."""

        async def fail(db: AsyncSession) -> Tuple[Invoice, Resource]:
            invoice = await get_invoice_by_number(db, invoice_number)
            resource = await db.get(Resource, invoice.resource_id)

            if invoice.status == InvoiceStatus.PAID:
                logger.warning(
                    "Ignoring failure for an invoice that is already paid",
                    extra={"invoice_number": invoice_number},
                )
                return invoice, resource

            await self._release_holds(db, invoice, await get_invoice_items(db, invoice), reason=reason)
            if invoice.status == InvoiceStatus.PENDING:
                self._mark_failed(invoice, transaction_id, reason)
            return invoice, resource

        return await self._transaction(fail, "fail_invoice")
