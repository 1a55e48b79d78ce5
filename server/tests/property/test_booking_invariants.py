"""Property-based tests for hold and booking invariants."""

import asyncio
from datetime import date, datetime, timedelta
from itertools import combinations
from uuid import uuid4

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from venue_reservations.core.clock import FrozenClock
from venue_reservations.core.config import Settings
from venue_reservations.core.database import Base, run_in_transaction
from venue_reservations.core.exceptions import AvailabilityConflictError, HoldConflictError
from venue_reservations.models import Booking, BookingStatus, Hold, Resource, ResourceKind, TimeSlot
from venue_reservations.schemas.availability import ConflictReason
from venue_reservations.schemas.invoice import CreateInvoiceRequest
from venue_reservations.services.availability import RequestedInterval, ResourceSnapshot, check_availability
from venue_reservations.services.booking_finalizer import BookingFinalizer
from venue_reservations.services.hold_service import HoldService
from venue_reservations.services.invoice_service import InvoiceService
from venue_reservations.services.payment_gateway import MockPaymentGateway

NOW = datetime(2025, 5, 20, 8, 0, 0)
FIRST_DAY = date(2025, 7, 1)
MEMBERS = ["member-a", "member-b", "member-c"]
TTL = 180

# Strategies for generating test data
members = st.sampled_from(MEMBERS)
slots = st.sampled_from(list(TimeSlot))
pauses = st.integers(min_value=0, max_value=400)
expiry_offsets = st.integers(min_value=-3600, max_value=3600)


def make_settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        environment="test",
        venue_timezone="UTC",
        scheduler_enabled=False,
        scheduler_retry_backoff_seconds=0,
        hold_ttl_seconds=TTL,
    )


def run_scenario(scenario):
    """Run `scenario(session_factory, clock, settings)` against a fresh database."""

    async def runner():
        engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        try:
            return await scenario(factory, FrozenClock(NOW, timezone_name="UTC"), make_settings())
        finally:
            await engine.dispose()

    return asyncio.run(runner())


async def seed_resource(factory, kind: ResourceKind) -> Resource:
    async with factory() as session:
        resource = Resource(
            kind=kind.value,
            name=f"Property {kind.value.title()}",
            min_guests=0,
            max_guests=None,
            member_price=1000,
            guest_price=1500,
            currency="PKR",
            is_active=True,
            is_out_of_service=False,
            is_reserved=False,
        )
        session.add(resource)
        await session.commit()
        return resource


async def confirmed_bookings(factory, resource_id):
    async with factory() as session:
        result = await session.execute(
            select(Booking).where(Booking.resource_id == resource_id, Booking.status == BookingStatus.CONFIRMED)
        )
        return list(result.scalars().all())


async def checkout(invoices, finalizer, request, member, pay):
    """Start checkout and optionally pay; conflicts are an expected outcome."""
    try:
        response = await invoices.create_invoice(request, member)
        if pay:
            await finalizer.finalize_success(response.invoice_number)
    except AvailabilityConflictError:
        pass


@given(expiry_offset=expiry_offsets, holder=members, requester=members)
def test_hold_never_active_at_or_after_expiry(expiry_offset, holder, requester):
    """A hold blocks another requester exactly while its expiry is in the future."""
    hall = Resource(id=uuid4(), kind="HALL", name="Hall", min_guests=0, max_guests=None, is_active=True)
    expiry = NOW + timedelta(seconds=expiry_offset)
    hold = Hold(id=uuid4(), resource_id=hall.id, on_hold=True, hold_by=holder, hold_expiry=expiry)
    interval = RequestedInterval(
        kind=ResourceKind.HALL, start_date=FIRST_DAY, end_date=FIRST_DAY + timedelta(days=1), time_slot=TimeSlot.NIGHT,
    )

    result = check_availability(ResourceSnapshot(hall, hold=hold), interval, requester, now=NOW, today=NOW.date())

    blocked = result.reason == ConflictReason.HOLD
    assert blocked == (expiry > NOW and holder != requester)


@given(
    booked=st.tuples(st.integers(0, 20), st.integers(1, 7)),
    requested=st.tuples(st.integers(0, 20), st.integers(1, 7)),
)
def test_room_conflict_matches_half_open_overlap(booked, requested):
    """Room stays conflict exactly when their night ranges intersect."""
    room = Resource(id=uuid4(), kind="ROOM", name="Room", min_guests=0, max_guests=None, is_active=True)
    booked_in = FIRST_DAY + timedelta(days=booked[0])
    booked_out = booked_in + timedelta(days=booked[1])
    requested_in = FIRST_DAY + timedelta(days=requested[0])
    requested_out = requested_in + timedelta(days=requested[1])
    existing = Booking(
        id=uuid4(), resource_id=room.id, start_date=booked_in, end_date=booked_out,
        member_ref="member-x", guest_count=1, total_amount=0, status=BookingStatus.CONFIRMED.value,
    )
    interval = RequestedInterval(kind=ResourceKind.ROOM, start_date=requested_in, end_date=requested_out)

    result = check_availability(ResourceSnapshot(room, bookings=[existing]), interval, "member-a", now=NOW, today=NOW.date())

    shared_nights = set(range(booked[0], booked[0] + booked[1])) & set(range(requested[0], requested[0] + requested[1]))
    assert (result.reason == ConflictReason.BOOKING) == bool(shared_nights)


@pytest.mark.slow
@settings(max_examples=25, deadline=None)
@given(
    attempts=st.lists(
        st.tuples(members, st.integers(0, 2), slots, st.booleans(), pauses),
        min_size=1,
        max_size=12,
    )
)
def test_no_double_booking_of_slots(attempts):
    """No two confirmed hall bookings share a day and slot."""

    async def scenario(factory, clock, app_settings):
        hall = await seed_resource(factory, ResourceKind.HALL)
        invoices = InvoiceService(factory, clock, app_settings, MockPaymentGateway())
        finalizer = BookingFinalizer(factory, clock, app_settings)

        for member, day_offset, slot, pay, pause in attempts:
            request = CreateInvoiceRequest(
                resource_id=hall.id, start_date=FIRST_DAY + timedelta(days=day_offset), time_slot=slot,
            )
            await checkout(invoices, finalizer, request, member, pay)
            clock.advance(seconds=pause)

        return await confirmed_bookings(factory, hall.id)

    bookings = run_scenario(scenario)

    keys = [(booking.start_date, booking.time_slot) for booking in bookings]
    assert len(keys) == len(set(keys))


@pytest.mark.slow
@settings(max_examples=25, deadline=None)
@given(
    attempts=st.lists(
        st.tuples(members, st.integers(0, 10), st.integers(1, 4), st.booleans(), pauses),
        min_size=1,
        max_size=12,
    )
)
def test_no_overlapping_room_stays(attempts):
    """No two confirmed stays of one room share a night."""

    async def scenario(factory, clock, app_settings):
        room = await seed_resource(factory, ResourceKind.ROOM)
        invoices = InvoiceService(factory, clock, app_settings, MockPaymentGateway())
        finalizer = BookingFinalizer(factory, clock, app_settings)

        for member, offset, nights, pay, pause in attempts:
            check_in = FIRST_DAY + timedelta(days=offset)
            request = CreateInvoiceRequest(
                resource_id=room.id, start_date=check_in, end_date=check_in + timedelta(days=nights),
            )
            await checkout(invoices, finalizer, request, member, pay)
            clock.advance(seconds=pause)

        return await confirmed_bookings(factory, room.id)

    bookings = run_scenario(scenario)

    for first, second in combinations(bookings, 2):
        assert not (first.start_date < second.end_date and first.end_date > second.start_date)


@pytest.mark.slow
@settings(max_examples=25, deadline=None)
@given(
    operations=st.lists(
        st.tuples(st.sampled_from(["acquire", "release"]), members, pauses),
        min_size=1,
        max_size=15,
    )
)
def test_hold_mutual_exclusion(operations):
    """Acquire succeeds exactly when nobody else holds an unexpired claim."""

    async def scenario(factory, clock, app_settings):
        hall = await seed_resource(factory, ResourceKind.HALL)
        holder, expiry = None, None

        for action, member, pause in operations:
            now = clock.now()
            other_active = holder is not None and holder != member and expiry > now

            async def work(db):
                service = HoldService(db, clock, app_settings)
                if action == "acquire":
                    return await service.acquire_hold(hall.id, member)
                return await service.release_hold(hall.id, member)

            if action == "acquire":
                if other_active:
                    with pytest.raises(HoldConflictError):
                        await run_in_transaction(factory, work, operation=action, max_attempts=1)
                else:
                    hold = await run_in_transaction(factory, work, operation=action, max_attempts=1)
                    assert hold.hold_by == member
                    assert hold.hold_expiry == now + timedelta(seconds=TTL)
                    holder, expiry = member, hold.hold_expiry
            else:
                if holder == member:
                    assert await run_in_transaction(factory, work, operation=action, max_attempts=1) is True
                    holder, expiry = None, None
                elif other_active:
                    with pytest.raises(HoldConflictError):
                        await run_in_transaction(factory, work, operation=action, max_attempts=1)
                else:
                    assert await run_in_transaction(factory, work, operation=action, max_attempts=1) is False

            async with factory() as session:
                assert await HoldService(session, clock, app_settings).count_active_holds() <= 1

            clock.advance(seconds=pause)

    run_scenario(scenario)
