"""Invoice generation: availability check, hold and gateway call."""

import logging
from dataclasses import replace
from typing import List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.clock import Clock
from ..core.config import Settings
from ..core.database import lock_resource, run_in_transaction
from ..core.exceptions import (
    GatewayFailureError,
    HoldConflictError,
    NotFoundError,
    RoomsUnavailableError,
    ValidationError,
)
from ..models.hold import Hold
from ..models.invoice import Invoice, InvoiceItem, InvoiceStatus
from ..models.resource import TIME_SLOT_LABELS, PricingType, Resource, ResourceKind, TimeSlot
from ..schemas.common import Money
from ..schemas.invoice import (
    BookingSummary,
    CreateInvoiceRequest,
    CreateRoomInvoiceRequest,
    InvoiceResponse,
    RoomGroupSummary,
    RoomInvoiceResponse,
)
from .availability import AvailabilityService, RequestedInterval, build_interval
from .hold_service import HoldService
from .payment_gateway import GatewayError, InvoicePayload, PaymentGateway, generate_reference

logger = logging.getLogger(__name__)


def calculate_amount(resource: Resource, interval: RequestedInterval, pricing_type: PricingType) -> int:
    """Rooms are priced per night; every other kind per booking."""
    unit_price = resource.price_for(pricing_type)
    if interval.kind == ResourceKind.ROOM:
        return unit_price * (interval.end_date - interval.start_date).days
    return unit_price


def split_guests(guest_count: Optional[int], rooms: int) -> List[Optional[int]]:
    """Spread guests over rooms as evenly as possible, earlier rooms first."""
    if guest_count is None:
        return [None] * rooms
    base, extra = divmod(guest_count, rooms)
    return [base + 1 if index < extra else base for index in range(rooms)]


class InvoiceService:
    """
    Service for starting checkout of a resource.

    The availability check and the hold are committed together in one
    transaction. The gateway is called after that commit so no database
    transaction stays open across network I/O; a gateway failure is
    compensated by releasing the hold.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        clock: Clock,
        settings: Settings,
        gateway: PaymentGateway,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.settings = settings
        self.gateway = gateway

    async def create_invoice(self, request: CreateInvoiceRequest, requester_id: str) -> InvoiceResponse:
        """
        Check availability, hold the resource and register an invoice.

        Args:
            request: Requested resource, interval and price tier
            requester_id: Member starting checkout

        Returns:
            Invoice descriptor with amount, due time and booking summary

        Raises:
            NotFoundError: If the resource does not exist
            ValidationError: If the request is malformed for the resource kind
            AvailabilityConflictError: If the resource is not available
            TransientWriteConflictError: If the write kept hitting concurrent updates
            GatewayFailureError: If the gateway failed; the hold has been released
        """

        async def reserve(db: AsyncSession):
            await lock_resource(db, request.resource_id)
            availability = AvailabilityService(db, self.clock, self.settings)
            resource, interval, result = await availability.check(request, requester_id)
            result.raise_for_conflict(resource)

            hold = await HoldService(db, self.clock, self.settings).acquire_hold(resource.id, requester_id)

            amount = calculate_amount(resource, interval, request.pricing_type)
            invoice = self._new_invoice(requester_id, interval, request.pricing_type, resource, amount, hold)
            db.add(invoice)
            await db.flush()
            db.add(InvoiceItem(
                invoice_id=invoice.id,
                resource_id=resource.id,
                amount=amount,
                guest_count=invoice.guest_count,
            ))
            return resource, interval, invoice

        resource, interval, invoice = await run_in_transaction(
            self.session_factory,
            reserve,
            operation="create_invoice",
            max_attempts=self.settings.request_max_attempts,
        )

        summary = self._booking_summary(resource, interval)
        payload = InvoicePayload(
            type=interval.kind.value,
            amount=invoice.amount,
            consumer_info={
                "member_ref": requester_id,
                "resource_name": resource.name,
                "pricing_type": invoice.pricing_type,
            },
            booking_data={
                "invoice_number": invoice.invoice_number,
                "currency": invoice.currency,
                **summary.model_dump(mode="json"),
            },
        )

        invoice = await self._submit(invoice, payload, [resource.id], requester_id)
        return InvoiceResponse(
            invoice_id=str(invoice.id),
            invoice_number=invoice.invoice_number,
            consumer_number=invoice.consumer_number,
            status=invoice.status,
            amount=Money(amount=invoice.amount, currency=invoice.currency),
            due_at=invoice.due_at,
            payment_channels=self.settings.payment_channels,
            booking_summary=summary,
        )

    async def create_room_invoice(self, request: CreateRoomInvoiceRequest, requester_id: str) -> RoomInvoiceResponse:
        """
        Hold several free rooms of one type and register a single invoice.

        Rooms of the type are tried in id order, which is also the order
        their locks are taken everywhere else. Each candidate is locked,
        re-checked and held in the same transaction; when fewer than the
        requested number can be held the whole transaction rolls back, so no
        partial holds remain.

        Raises:
            NotFoundError: If no room has the requested type
            ValidationError: If the dates are invalid or there are fewer guests than rooms
            RoomsUnavailableError: If not enough rooms of the type are free
            TransientWriteConflictError: If the write kept hitting concurrent updates
            GatewayFailureError: If the gateway failed; every hold has been released
        """
        interval = build_interval(ResourceKind.ROOM, request, self.clock, self.settings)
        if request.guest_count is not None and request.guest_count < request.room_count:
            raise ValidationError(
                detail="Every room needs at least one guest",
                errors={"guest_count": f"must be at least {request.room_count}"},
            )
        shares = split_guests(request.guest_count, request.room_count)

        async def reserve(db: AsyncSession):
            candidates = await db.execute(
                select(Resource)
                .where(Resource.kind == ResourceKind.ROOM.value, Resource.room_type == request.room_type)
                .order_by(Resource.id)
            )
            rooms = list(candidates.scalars().all())
            if not rooms:
                raise NotFoundError(resource_type="room type", resource_id=request.room_type)

            availability = AvailabilityService(db, self.clock, self.settings)
            holds = HoldService(db, self.clock, self.settings)
            held: List[Tuple[Resource, RequestedInterval, Hold]] = []

            for room in rooms:
                if len(held) == request.room_count:
                    break

                room_interval = replace(interval, guest_count=shares[len(held)])
                await lock_resource(db, room.id)
                result = await availability.check_interval(room, room_interval, requester_id)
                if not result.available:
                    continue
                try:
                    hold = await holds.acquire_hold(room.id, requester_id)
                except HoldConflictError:
                    continue
                held.append((room, room_interval, hold))

            if len(held) < request.room_count:
                logger.info(
                    "Not enough rooms of type available",
                    extra={
                        "room_type": request.room_type,
                        "requester_id": requester_id,
                        "available": len(held),
                        "requested": request.room_count,
                    },
                )
                raise RoomsUnavailableError(request.room_type, available=len(held), requested=request.room_count)

            amounts = [calculate_amount(room, interval, request.pricing_type) for room, _, _ in held]
            first_room, _, _ = held[0]
            invoice = self._new_invoice(
                requester_id,
                interval,
                request.pricing_type,
                first_room,
                sum(amounts),
                min((hold for _, _, hold in held), key=lambda h: h.hold_expiry),
            )
            invoice.room_type = request.room_type
            invoice.room_count = request.room_count
            db.add(invoice)
            await db.flush()

            for (room, room_interval, _), amount in zip(held, amounts):
                db.add(InvoiceItem(
                    invoice_id=invoice.id,
                    resource_id=room.id,
                    amount=amount,
                    guest_count=room_interval.guest_count or 0,
                ))
            return held, invoice

        held, invoice = await run_in_transaction(
            self.session_factory,
            reserve,
            operation="create_room_invoice",
            max_attempts=self.settings.request_max_attempts,
        )

        summary = RoomGroupSummary(
            room_type=request.room_type,
            start_date=interval.start_date,
            end_date=interval.end_date,
            nights=(interval.end_date - interval.start_date).days,
            room_count=request.room_count,
            guest_count=request.guest_count or 0,
            hold_expires_at=invoice.due_at,
            rooms=[self._booking_summary(room, room_interval) for room, room_interval, _ in held],
        )
        payload = InvoicePayload(
            type=ResourceKind.ROOM.value,
            amount=invoice.amount,
            consumer_info={
                "member_ref": requester_id,
                "room_type": request.room_type,
                "nights": summary.nights,
                "rooms": request.room_count,
                "pricing_type": invoice.pricing_type,
            },
            booking_data={
                "invoice_number": invoice.invoice_number,
                "currency": invoice.currency,
                **summary.model_dump(mode="json"),
            },
        )

        invoice = await self._submit(invoice, payload, [room.id for room, _, _ in held], requester_id)
        return RoomInvoiceResponse(
            invoice_id=str(invoice.id),
            invoice_number=invoice.invoice_number,
            consumer_number=invoice.consumer_number,
            status=invoice.status,
            amount=Money(amount=invoice.amount, currency=invoice.currency),
            due_at=invoice.due_at,
            payment_channels=self.settings.payment_channels,
            booking_summary=summary,
        )

    def _new_invoice(
        self,
        requester_id: str,
        interval: RequestedInterval,
        pricing_type: PricingType,
        resource: Resource,
        amount: int,
        hold: Hold,
    ) -> Invoice:
        return Invoice(
            invoice_number=generate_reference("INV"),
            resource_id=resource.id,
            resource_kind=interval.kind.value,
            member_ref=requester_id,
            start_date=interval.start_date,
            end_date=interval.end_date,
            time_slot=interval.time_slot.value if interval.time_slot else None,
            start_time=interval.start_time,
            end_time=interval.end_time,
            guest_count=interval.guest_count or 0,
            pricing_type=pricing_type.value,
            amount=amount,
            currency=resource.currency,
            due_at=hold.hold_expiry,
            status=InvoiceStatus.PENDING,
        )

    async def _submit(
        self,
        invoice: Invoice,
        payload: InvoicePayload,
        resource_ids: Sequence[UUID],
        requester_id: str,
    ) -> Invoice:
        """Send a committed invoice to the gateway and record its consumer number."""
        try:
            acknowledgement = await self.gateway.create_invoice(payload)
        except GatewayError as e:
            await self._compensate(invoice.id, resource_ids, requester_id)
            logger.error(
                "Invoice generation failed at payment gateway",
                extra={
                    "invoice_number": invoice.invoice_number,
                    "resource_ids": [str(resource_id) for resource_id in resource_ids],
                    "requester_id": requester_id,
                    "error": str(e),
                },
            )
            raise GatewayFailureError(resource_id=str(invoice.resource_id)) from e

        async def record_acknowledgement(db: AsyncSession) -> Invoice:
            stored = await db.get(Invoice, invoice.id)
            stored.consumer_number = acknowledgement.consumer_number
            return stored

        invoice = await run_in_transaction(
            self.session_factory,
            record_acknowledgement,
            operation="record_invoice_acknowledgement",
            max_attempts=self.settings.request_max_attempts,
        )

        logger.info(
            "Invoice created",
            extra={
                "invoice_number": invoice.invoice_number,
                "resource_ids": [str(resource_id) for resource_id in resource_ids],
                "requester_id": requester_id,
                "amount": invoice.amount,
                "due_at": invoice.due_at.isoformat(),
            },
        )
        return invoice

    async def _compensate(self, invoice_id: UUID, resource_ids: Sequence[UUID], requester_id: str) -> None:
        """Release every hold of the invoice and fail it after a gateway error."""

        async def release(db: AsyncSession) -> None:
            holds = HoldService(db, self.clock, self.settings)
            for resource_id in sorted(resource_ids):
                await holds.release_if_held_by(resource_id, requester_id, reason="gateway_failure")
            stored = await db.get(Invoice, invoice_id)
            stored.status = InvoiceStatus.FAILED

        await run_in_transaction(
            self.session_factory,
            release,
            operation="release_hold_after_gateway_failure",
            max_attempts=self.settings.scheduler_max_retries,
            backoff_seconds=self.settings.scheduler_retry_backoff_seconds,
        )

    def _booking_summary(self, resource: Resource, interval: RequestedInterval) -> BookingSummary:
        slot = TimeSlot(interval.time_slot) if interval.time_slot else None
        return BookingSummary(
            resource_id=str(resource.id),
            resource_name=resource.name,
            kind=interval.kind,
            start_date=interval.start_date,
            end_date=interval.end_date,
            time_slot=slot,
            time_slot_label=TIME_SLOT_LABELS[slot] if slot else None,
            start_time=interval.start_time,
            end_time=interval.end_time,
            guest_count=interval.guest_count or 0,
        )
