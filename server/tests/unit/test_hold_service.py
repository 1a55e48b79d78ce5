"""Unit tests for hold service."""

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select

from venue_reservations.core.database import run_in_transaction
from venue_reservations.core.exceptions import HoldConflictError, NotFoundError
from venue_reservations.models import Hold, ResourceKind
from venue_reservations.services.hold_service import HoldService


async def acquire(factory, clock, settings, resource_id, requester_id, ttl_seconds=None):
    """Acquire a hold in its own committed transaction."""

    async def work(db):
        return await HoldService(db, clock, settings).acquire_hold(resource_id, requester_id, ttl_seconds)

    return await run_in_transaction(factory, work, operation="acquire_hold", max_attempts=1)


async def release(factory, clock, settings, resource_id, requester_id):
    async def work(db):
        return await HoldService(db, clock, settings).release_hold(resource_id, requester_id)

    return await run_in_transaction(factory, work, operation="release_hold", max_attempts=1)


async def stored_hold(factory, resource_id):
    async with factory() as session:
        result = await session.execute(select(Hold).where(Hold.resource_id == resource_id))
        return result.scalar_one_or_none()


@pytest.mark.asyncio
async def test_acquire_hold(test_session_factory, frozen_clock, test_settings, make_resource):
    """Test acquiring a free resource."""
    hall = await make_resource(ResourceKind.HALL)

    hold = await acquire(test_session_factory, frozen_clock, test_settings, hall.id, "member-a")

    assert hold.on_hold is True
    assert hold.hold_by == "member-a"
    assert hold.hold_expiry == frozen_clock.now() + timedelta(seconds=180)
    assert hold.acquired_at == frozen_clock.now()


@pytest.mark.asyncio
async def test_acquire_hold_with_explicit_ttl(test_session_factory, frozen_clock, test_settings, make_resource):
    """Test an explicit TTL overrides the configured default."""
    hall = await make_resource(ResourceKind.HALL)

    hold = await acquire(test_session_factory, frozen_clock, test_settings, hall.id, "member-a", ttl_seconds=30)

    assert hold.hold_expiry == frozen_clock.now() + timedelta(seconds=30)


@pytest.mark.asyncio
async def test_acquire_hold_uses_kind_ttl_override(test_session_factory, frozen_clock, test_settings, make_resource):
    """Test per-kind TTLs from settings."""
    settings = test_settings.model_copy(update={"hold_ttl_overrides": {"HALL": 600}})
    hall = await make_resource(ResourceKind.HALL)
    room = await make_resource(ResourceKind.ROOM)

    hall_hold = await acquire(test_session_factory, frozen_clock, settings, hall.id, "member-a")
    room_hold = await acquire(test_session_factory, frozen_clock, settings, room.id, "member-a")

    assert hall_hold.hold_expiry == frozen_clock.now() + timedelta(seconds=600)
    assert room_hold.hold_expiry == frozen_clock.now() + timedelta(seconds=180)


@pytest.mark.asyncio
async def test_acquire_hold_conflict(test_session_factory, frozen_clock, test_settings, make_resource):
    """Test a second requester is rejected while the hold is active."""
    hall = await make_resource(ResourceKind.HALL)
    first = await acquire(test_session_factory, frozen_clock, test_settings, hall.id, "member-a")

    with pytest.raises(HoldConflictError) as exc_info:
        await acquire(test_session_factory, frozen_clock, test_settings, hall.id, "member-b")

    problem = exc_info.value.problem_details
    assert exc_info.value.status_code == 409
    assert problem["code"] == "HOLD"
    assert problem["resource_id"] == str(hall.id)
    assert problem["conflicting_resource"]["hold_expiry"] == first.hold_expiry.isoformat() + "Z"

    # The winner's hold is untouched
    current = await stored_hold(test_session_factory, hall.id)
    assert current.hold_by == "member-a"
    assert current.hold_expiry == first.hold_expiry


@pytest.mark.asyncio
async def test_reacquire_extends_own_hold(test_session_factory, frozen_clock, test_settings, make_resource):
    """Test re-acquiring by the owner extends expiry and keeps acquired_at."""
    hall = await make_resource(ResourceKind.HALL)
    first = await acquire(test_session_factory, frozen_clock, test_settings, hall.id, "member-a")
    acquired_at = first.acquired_at

    frozen_clock.advance(seconds=60)
    second = await acquire(test_session_factory, frozen_clock, test_settings, hall.id, "member-a")

    assert second.hold_by == "member-a"
    assert second.acquired_at == acquired_at
    assert second.hold_expiry == frozen_clock.now() + timedelta(seconds=180)
    assert second.id == first.id


@pytest.mark.asyncio
async def test_expired_hold_can_be_taken_over(test_session_factory, frozen_clock, test_settings, make_resource):
    """Test an expired hold does not block, even before the sweep clears it."""
    hall = await make_resource(ResourceKind.HALL)
    await acquire(test_session_factory, frozen_clock, test_settings, hall.id, "member-a")

    frozen_clock.advance(seconds=180)
    hold = await acquire(test_session_factory, frozen_clock, test_settings, hall.id, "member-b")

    assert hold.hold_by == "member-b"
    assert hold.acquired_at == frozen_clock.now()


@pytest.mark.asyncio
async def test_owner_reacquiring_after_expiry_restarts_hold(
    test_session_factory, frozen_clock, test_settings, make_resource
):
    """Test an expired own hold starts a fresh claim."""
    hall = await make_resource(ResourceKind.HALL)
    await acquire(test_session_factory, frozen_clock, test_settings, hall.id, "member-a")

    frozen_clock.advance(minutes=10)
    hold = await acquire(test_session_factory, frozen_clock, test_settings, hall.id, "member-a")

    assert hold.acquired_at == frozen_clock.now()


@pytest.mark.asyncio
async def test_acquire_hold_unknown_resource(test_session_factory, frozen_clock, test_settings):
    """Test acquiring a hold on a missing resource."""
    with pytest.raises(NotFoundError):
        await acquire(test_session_factory, frozen_clock, test_settings, uuid4(), "member-a")


@pytest.mark.asyncio
async def test_release_hold(test_session_factory, frozen_clock, test_settings, make_resource):
    """Test the owner can release and the resource becomes free."""
    hall = await make_resource(ResourceKind.HALL)
    await acquire(test_session_factory, frozen_clock, test_settings, hall.id, "member-a")

    released = await release(test_session_factory, frozen_clock, test_settings, hall.id, "member-a")

    assert released is True
    current = await stored_hold(test_session_factory, hall.id)
    assert current.on_hold is False
    assert current.hold_by is None
    assert current.hold_expiry is None

    hold = await acquire(test_session_factory, frozen_clock, test_settings, hall.id, "member-b")
    assert hold.hold_by == "member-b"


@pytest.mark.asyncio
async def test_release_hold_by_other_requester(test_session_factory, frozen_clock, test_settings, make_resource):
    """Test releasing someone else's active hold is a conflict."""
    hall = await make_resource(ResourceKind.HALL)
    await acquire(test_session_factory, frozen_clock, test_settings, hall.id, "member-a")

    with pytest.raises(HoldConflictError):
        await release(test_session_factory, frozen_clock, test_settings, hall.id, "member-b")

    current = await stored_hold(test_session_factory, hall.id)
    assert current.hold_by == "member-a"


@pytest.mark.asyncio
async def test_release_without_hold(test_session_factory, frozen_clock, test_settings, make_resource):
    """Test releasing when nothing is held."""
    hall = await make_resource(ResourceKind.HALL)

    released = await release(test_session_factory, frozen_clock, test_settings, hall.id, "member-a")

    assert released is False


@pytest.mark.asyncio
async def test_release_if_held_by_ignores_other_owner(test_session_factory, frozen_clock, test_settings, make_resource):
    """Test compensating releases never clear another requester's hold."""
    hall = await make_resource(ResourceKind.HALL)
    await acquire(test_session_factory, frozen_clock, test_settings, hall.id, "member-b")

    async def work(db):
        return await HoldService(db, frozen_clock, test_settings).release_if_held_by(
            hall.id, "member-a", reason="gateway_failure"
        )

    released = await run_in_transaction(test_session_factory, work, operation="release", max_attempts=1)

    assert released is False
    assert (await stored_hold(test_session_factory, hall.id)).hold_by == "member-b"


@pytest.mark.asyncio
async def test_find_active_hold(test_session_factory, frozen_clock, test_settings, make_resource):
    """Test active hold lookup honours the expiry."""
    hall = await make_resource(ResourceKind.HALL)
    await acquire(test_session_factory, frozen_clock, test_settings, hall.id, "member-a")

    async with test_session_factory() as session:
        service = HoldService(session, frozen_clock, test_settings)
        assert (await service.find_active_hold(hall.id)).hold_by == "member-a"
        assert await service.count_active_holds() == 1

        frozen_clock.advance(seconds=181)
        assert await service.find_active_hold(hall.id) is None
        assert await service.count_active_holds() == 0


@pytest.mark.asyncio
async def test_holds_on_different_resources_are_independent(
    test_session_factory, frozen_clock, test_settings, make_resource
):
    """Test one requester's hold does not affect other resources."""
    lawn = await make_resource(ResourceKind.LAWN)
    hall = await make_resource(ResourceKind.HALL)

    await acquire(test_session_factory, frozen_clock, test_settings, lawn.id, "member-a")
    hold = await acquire(test_session_factory, frozen_clock, test_settings, hall.id, "member-b")

    assert hold.hold_by == "member-b"
