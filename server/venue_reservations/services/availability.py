"""Interval conflict checking for venue resources."""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock
from ..core.config import Settings
from ..core.exceptions import AvailabilityConflictError, HoldConflictError, NotFoundError, ValidationError
from ..core.observability import metrics_collector
from ..models.booking import Booking, BookingStatus
from ..models.hold import Hold
from ..models.maintenance import MaintenanceWindow
from ..models.reservation import Reservation
from ..models.resource import Resource, ResourceKind, TimeSlot
from ..schemas.availability import BookingIntervalRequest, ConflictReason

logger = logging.getLogger(__name__)


class PhotoshootOverlapPolicy(str, Enum):
    """How overlapping photoshoot bookings are treated."""
    ALLOW_CONCURRENT = "ALLOW_CONCURRENT"
    REJECT_OVERLAP = "REJECT_OVERLAP"


@dataclass(frozen=True)
class BusinessRules:
    """Kind-specific rules applied after the overlap checks."""

    photoshoot_overlap_policy: PhotoshootOverlapPolicy = PhotoshootOverlapPolicy.ALLOW_CONCURRENT
    photoshoot_opening_hour: int = 9
    photoshoot_last_start_hour: int = 18

    @classmethod
    def from_settings(cls, settings: Settings) -> "BusinessRules":
        return cls(
            photoshoot_overlap_policy=PhotoshootOverlapPolicy(settings.photoshoot_overlap_policy),
            photoshoot_opening_hour=settings.photoshoot_opening_hour,
            photoshoot_last_start_hour=settings.photoshoot_last_start_hour,
        )


@dataclass(frozen=True)
class RequestedInterval:
    """
    Normalized request for one resource.

    `start_date`/`end_date` is the half-open range of occupied days. Times are
    naive UTC; `local_start_hour` is the photoshoot start hour at the venue.
    """

    kind: ResourceKind
    start_date: date
    end_date: date
    time_slot: Optional[TimeSlot] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    local_start_hour: Optional[int] = None
    guest_count: Optional[int] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "time_slot": self.time_slot.value if self.time_slot else None,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "guest_count": self.guest_count,
        }


@dataclass
class ResourceSnapshot:
    """Everything the checker needs to know about one resource."""

    resource: Resource
    maintenance_windows: List[MaintenanceWindow] = field(default_factory=list)
    reservations: List[Reservation] = field(default_factory=list)
    bookings: List[Booking] = field(default_factory=list)
    hold: Optional[Hold] = None


@dataclass(frozen=True)
class AvailabilityResult:
    """Outcome of an availability check. The first conflict found wins."""

    available: bool
    reason: Optional[ConflictReason] = None
    message: Optional[str] = None
    conflicting_entity: Optional[Dict[str, Any]] = None

    @classmethod
    def ok(cls) -> "AvailabilityResult":
        return cls(available=True)

    @classmethod
    def conflict(
        cls,
        reason: ConflictReason,
        message: str,
        conflicting_entity: Optional[Dict[str, Any]] = None,
    ) -> "AvailabilityResult":
        return cls(available=False, reason=reason, message=message, conflicting_entity=conflicting_entity)

    def raise_for_conflict(self, resource: Resource) -> None:
        """Raise the typed 409 matching this result, if it is a conflict."""
        if self.available:
            return

        resource_id = str(resource.id)
        if self.reason == ConflictReason.HOLD:
            expiry = self.conflicting_entity.get("hold_expiry") if self.conflicting_entity else None
            raise HoldConflictError(
                resource_id=resource_id,
                resource_name=resource.name,
                hold_expiry=datetime.fromisoformat(expiry) if expiry else None,
            )

        raise AvailabilityConflictError(
            resource_id=resource_id,
            reason=self.reason.value,
            detail=self.message,
            conflicting_resource=self.conflicting_entity,
        )


def slots_compatible(existing: Optional[str], requested: Optional[str]) -> bool:
    """Two slot specs collide when they are equal or either side covers the whole day."""
    if existing is None or requested is None:
        return True
    return existing == requested


def days_overlap(start_a: date, end_a: date, start_b: date, end_b: date) -> bool:
    """Overlap of two half-open day ranges."""
    return start_a < end_b and end_a > start_b


def build_interval(
    kind: ResourceKind,
    request: BookingIntervalRequest,
    clock: Clock,
    settings: Settings,
) -> RequestedInterval:
    """
    Validate the request shape for the resource kind and normalize it.

    Raises:
        ValidationError: If required fields are missing or the interval is in the past
    """
    today = clock.today()

    if kind == ResourceKind.PHOTOSHOOT:
        if request.start_time is None:
            raise ValidationError(
                detail="Photoshoot bookings require a start time",
                errors={"start_time": "required"},
            )

        start_time = clock.to_utc(request.start_time)
        if start_time <= clock.now():
            raise ValidationError(
                detail="Photoshoot start time must be in the future",
                errors={"start_time": "in the past"},
            )

        local_start = clock.to_local(start_time)
        start_date = local_start.date()
        return RequestedInterval(
            kind=kind,
            start_date=start_date,
            end_date=start_date + timedelta(days=1),
            start_time=start_time,
            end_time=start_time + timedelta(minutes=settings.photoshoot_duration_minutes),
            local_start_hour=local_start.hour,
            guest_count=request.guest_count,
        )

    if request.start_date is None:
        raise ValidationError(
            detail=f"{kind.value.title()} bookings require a start date",
            errors={"start_date": "required"},
        )

    if request.start_date < today:
        raise ValidationError(
            detail=f"Cannot book '{request.start_date.isoformat()}', it is in the past",
            errors={"start_date": "in the past"},
        )

    if kind.uses_date_range:
        if request.end_date is None:
            raise ValidationError(
                detail="Room bookings require a check-out date",
                errors={"end_date": "required"},
            )
        if request.end_date <= request.start_date:
            raise ValidationError(
                detail="Check-out date must be after check-in date",
                errors={"end_date": "must be after start_date"},
            )
        return RequestedInterval(
            kind=kind,
            start_date=request.start_date,
            end_date=request.end_date,
            guest_count=request.guest_count,
        )

    # Halls and lawns are booked one slot on one day
    if kind.uses_time_slot and request.time_slot is None:
        raise ValidationError(
            detail=f"{kind.value.title()} bookings require a time slot",
            errors={"time_slot": "required"},
        )
    return RequestedInterval(
        kind=kind,
        start_date=request.start_date,
        end_date=request.start_date + timedelta(days=1),
        time_slot=request.time_slot,
        guest_count=request.guest_count,
    )


def _maintenance_conflict(
    resource: Resource,
    window: MaintenanceWindow,
    today: date,
) -> AvailabilityResult:
    start = window.start_date.isoformat()
    end = window.end_date.isoformat()
    if window.start_date > today:
        classification = "scheduled"
        message = f"'{resource.name}' is scheduled for maintenance from {start} to {end}"
    else:
        classification = "current"
        message = f"'{resource.name}' is currently out of service until {end}"
    if window.reason:
        message += f": {window.reason}"

    return AvailabilityResult.conflict(
        ConflictReason.MAINTENANCE,
        message,
        {
            "type": "maintenance_window",
            "id": str(window.id),
            "start_date": start,
            "end_date": end,
            "reason": window.reason,
            "classification": classification,
        },
    )


def _check_capacity(resource: Resource, interval: RequestedInterval, rules: BusinessRules) -> AvailabilityResult:
    guests = interval.guest_count
    if guests is not None:
        if guests < resource.min_guests:
            return AvailabilityResult.conflict(
                ConflictReason.CAPACITY,
                f"'{resource.name}' requires at least {resource.min_guests} guests",
                {"type": "capacity", "min_guests": resource.min_guests, "requested": guests},
            )
        if resource.max_guests is not None and guests > resource.max_guests:
            return AvailabilityResult.conflict(
                ConflictReason.CAPACITY,
                f"'{resource.name}' allows at most {resource.max_guests} guests",
                {"type": "capacity", "max_guests": resource.max_guests, "requested": guests},
            )

    if interval.kind == ResourceKind.PHOTOSHOOT and interval.local_start_hour is not None:
        hour = interval.local_start_hour
        if hour < rules.photoshoot_opening_hour or hour >= rules.photoshoot_last_start_hour:
            return AvailabilityResult.conflict(
                ConflictReason.CAPACITY,
                (
                    f"Photoshoots can start between {rules.photoshoot_opening_hour:02d}:00 "
                    f"and {rules.photoshoot_last_start_hour:02d}:00"
                ),
                {
                    "type": "opening_hours",
                    "opening_hour": rules.photoshoot_opening_hour,
                    "last_start_hour": rules.photoshoot_last_start_hour,
                    "requested_hour": hour,
                },
            )

    return AvailabilityResult.ok()


def check_availability(
    snapshot: ResourceSnapshot,
    interval: RequestedInterval,
    requester_id: Optional[str],
    now: datetime,
    today: date,
    rules: Optional[BusinessRules] = None,
) -> AvailabilityResult:
    """
    Decide whether the snapshot's resource is free for the interval.

    Checks run in a fixed order and the first conflict is returned:
    gating (inactive, maintenance), active hold by someone else, admin
    reservation, confirmed booking, then capacity and opening hours.
    Performs no I/O.
    """
    rules = rules or BusinessRules()
    resource = snapshot.resource
    kind = interval.kind

    # Gating
    if kind in (ResourceKind.ROOM, ResourceKind.PHOTOSHOOT) and not resource.is_active:
        return AvailabilityResult.conflict(
            ConflictReason.INACTIVE,
            f"'{resource.name}' is not available for booking",
            {"type": "resource", "id": str(resource.id), "is_active": False},
        )

    for window in sorted(snapshot.maintenance_windows, key=lambda w: w.start_date):
        if window.intersects(interval.start_date, interval.end_date):
            return _maintenance_conflict(resource, window, today)

    # Holds are judged by expiry, never by the on_hold flag alone
    hold = snapshot.hold
    if hold is not None and hold.is_active(now) and hold.hold_by != requester_id:
        return AvailabilityResult.conflict(
            ConflictReason.HOLD,
            f"'{resource.name}' is currently on hold by another user",
            {
                "type": "hold",
                "resource_id": str(resource.id),
                "hold_expiry": hold.hold_expiry.isoformat(),
            },
        )

    requested_slot = interval.time_slot.value if interval.time_slot else None

    for reservation in snapshot.reservations:
        if days_overlap(reservation.reserved_from, reservation.reserved_to, interval.start_date, interval.end_date) \
                and slots_compatible(reservation.time_slot, requested_slot):
            return AvailabilityResult.conflict(
                ConflictReason.RESERVATION,
                (
                    f"'{resource.name}' is reserved from {reservation.reserved_from.isoformat()} "
                    f"to {reservation.reserved_to.isoformat()}"
                ),
                {
                    "type": "reservation",
                    "id": str(reservation.id),
                    "reserved_from": reservation.reserved_from.isoformat(),
                    "reserved_to": reservation.reserved_to.isoformat(),
                    "time_slot": reservation.time_slot,
                },
            )

    for booking in snapshot.bookings:
        if not booking.is_confirmed:
            continue

        if kind == ResourceKind.PHOTOSHOOT:
            if rules.photoshoot_overlap_policy == PhotoshootOverlapPolicy.ALLOW_CONCURRENT:
                continue
            if booking.start_time is None or booking.end_time is None:
                continue
            overlaps = booking.start_time < interval.end_time and booking.end_time > interval.start_time
        else:
            overlaps = days_overlap(booking.start_date, booking.end_date, interval.start_date, interval.end_date) \
                and slots_compatible(booking.time_slot, requested_slot)

        if overlaps:
            return AvailabilityResult.conflict(
                ConflictReason.BOOKING,
                f"'{resource.name}' is already booked for the requested time",
                {
                    "type": "booking",
                    "id": str(booking.id),
                    "start_date": booking.start_date.isoformat(),
                    "end_date": booking.end_date.isoformat(),
                    "time_slot": booking.time_slot,
                },
            )

    return _check_capacity(resource, interval, rules)


class AvailabilityService:
    """Loads resource snapshots and runs the conflict checker against them."""

    def __init__(self, db: AsyncSession, clock: Clock, settings: Settings):
        self.db = db
        self.clock = clock
        self.settings = settings
        self.rules = BusinessRules.from_settings(settings)

    async def get_resource(self, resource_id: UUID) -> Resource:
        """
        Get a resource by ID.

        Raises:
            NotFoundError: If the resource does not exist
        """
        resource = await self.db.get(Resource, resource_id)
        if resource is None:
            logger.warning("Resource not found", extra={"resource_id": str(resource_id)})
            raise NotFoundError(resource_type="resource", resource_id=str(resource_id))
        return resource

    async def load_snapshot(self, resource: Resource, interval: RequestedInterval) -> ResourceSnapshot:
        """Read every blocking record that could touch the interval."""
        windows = await self.db.execute(
            select(MaintenanceWindow).where(
                MaintenanceWindow.resource_id == resource.id,
                MaintenanceWindow.start_date < interval.end_date,
                MaintenanceWindow.end_date >= interval.start_date,
            )
        )
        reservations = await self.db.execute(
            select(Reservation).where(
                Reservation.resource_id == resource.id,
                Reservation.reserved_from < interval.end_date,
                Reservation.reserved_to > interval.start_date,
            )
        )
        bookings = await self.db.execute(
            select(Booking).where(
                Booking.resource_id == resource.id,
                Booking.status == BookingStatus.CONFIRMED,
                Booking.start_date < interval.end_date,
                Booking.end_date > interval.start_date,
            )
        )
        hold = await self.db.execute(select(Hold).where(Hold.resource_id == resource.id))

        return ResourceSnapshot(
            resource=resource,
            maintenance_windows=list(windows.scalars().all()),
            reservations=list(reservations.scalars().all()),
            bookings=list(bookings.scalars().all()),
            hold=hold.scalar_one_or_none(),
        )

    async def check(
        self,
        request: BookingIntervalRequest,
        requester_id: Optional[str],
    ) -> tuple[Resource, RequestedInterval, AvailabilityResult]:
        """
        Check availability for a request.

        Returns:
            The resource, the normalized interval and the check result

        Raises:
            NotFoundError: If the resource does not exist
            ValidationError: If the request is malformed for the resource kind
        """
        resource = await self.get_resource(request.resource_id)
        kind = ResourceKind(resource.kind)
        interval = build_interval(kind, request, self.clock, self.settings)
        result = await self.check_interval(resource, interval, requester_id)
        return resource, interval, result

    async def check_interval(
        self,
        resource: Resource,
        interval: RequestedInterval,
        requester_id: Optional[str],
    ) -> AvailabilityResult:
        """Run the checker for an already normalized interval."""
        snapshot = await self.load_snapshot(resource, interval)
        result = check_availability(
            snapshot,
            interval,
            requester_id,
            now=self.clock.now(),
            today=self.clock.today(),
            rules=self.rules,
        )

        metrics_collector.record_availability_check(
            interval.kind.value,
            result.reason.value if result.reason else "AVAILABLE",
        )
        if not result.available:
            logger.info(
                "Resource not available",
                extra={
                    "resource_id": str(resource.id),
                    "requester_id": requester_id,
                    "reason": result.reason.value,
                    "interval": interval.as_dict(),
                },
            )

        return result
