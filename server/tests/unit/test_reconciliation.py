"""Unit tests for the reconciliation passes."""

from datetime import date, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from venue_reservations.core.database import run_in_transaction
from venue_reservations.core.exceptions import TransientWriteConflictError
from venue_reservations.models import (
    Hold,
    Invoice,
    InvoiceStatus,
    MaintenanceWindow,
    Reservation,
    Resource,
    ResourceKind,
)
from venue_reservations.services.hold_service import HoldService
from venue_reservations.services.reconciliation import ReconciliationService


def database_locked() -> OperationalError:
    return OperationalError("UPDATE holds", {}, Exception("database is locked"))


async def acquire(factory, clock, settings, resource_id, requester_id):
    async def work(db):
        return await HoldService(db, clock, settings).acquire_hold(resource_id, requester_id)

    return await run_in_transaction(factory, work, operation="acquire_hold", max_attempts=1)


async def reload(factory, model, record_id):
    async with factory() as session:
        return await session.get(model, record_id)


@pytest.fixture
def reconciliation(test_session_factory, frozen_clock, test_settings):
    return ReconciliationService(test_session_factory, frozen_clock, test_settings)


class TestHoldExpiry:
    """Hold expiry sweep."""

    @pytest.mark.asyncio
    async def test_expired_holds_are_cleared(
        self, reconciliation, test_session_factory, frozen_clock, test_settings, make_resource
    ):
        hall = await make_resource(ResourceKind.HALL)
        lawn = await make_resource(ResourceKind.LAWN)
        await acquire(test_session_factory, frozen_clock, test_settings, hall.id, "member-a")
        frozen_clock.advance(seconds=120)
        await acquire(test_session_factory, frozen_clock, test_settings, lawn.id, "member-b")

        frozen_clock.advance(seconds=61)
        expired = await reconciliation.expire_holds()

        assert expired == 1
        async with test_session_factory() as session:
            holds = {
                hold.resource_id: hold
                for hold in (await session.execute(select(Hold))).scalars().all()
            }
        assert holds[hall.id].on_hold is False
        assert holds[hall.id].hold_by is None
        assert holds[hall.id].hold_expiry is None
        assert holds[lawn.id].hold_by == "member-b"

    @pytest.mark.asyncio
    async def test_hold_expiring_exactly_now_is_left_for_next_run(
        self, reconciliation, test_session_factory, frozen_clock, test_settings, make_resource
    ):
        hall = await make_resource(ResourceKind.HALL)
        await acquire(test_session_factory, frozen_clock, test_settings, hall.id, "member-a")

        frozen_clock.advance(seconds=180)

        assert await reconciliation.expire_holds() == 0
        frozen_clock.advance(seconds=1)
        assert await reconciliation.expire_holds() == 1

    @pytest.mark.asyncio
    async def test_sweep_is_idempotent(
        self, reconciliation, test_session_factory, frozen_clock, test_settings, make_resource
    ):
        hall = await make_resource(ResourceKind.HALL)
        await acquire(test_session_factory, frozen_clock, test_settings, hall.id, "member-a")
        frozen_clock.advance(minutes=5)

        assert await reconciliation.expire_holds() == 1
        assert await reconciliation.expire_holds() == 0

    @pytest.mark.asyncio
    async def test_overdue_pending_invoices_are_failed(
        self, reconciliation, test_session_factory, frozen_clock, make_resource, add_records
    ):
        hall = await make_resource(ResourceKind.HALL)
        now = frozen_clock.now()

        def invoice(number, status, due_at):
            return Invoice(
                invoice_number=number,
                resource_id=hall.id,
                resource_kind=ResourceKind.HALL.value,
                member_ref="member-a",
                start_date=date(2025, 7, 1),
                end_date=date(2025, 7, 2),
                time_slot="NIGHT",
                pricing_type="member",
                amount=150000,
                currency="PKR",
                due_at=due_at,
                status=status,
            )

        await add_records(
            invoice("INV-OVERDUE", InvoiceStatus.PENDING, now - timedelta(minutes=1)),
            invoice("INV-PAID", InvoiceStatus.PAID, now - timedelta(minutes=1)),
            invoice("INV-OPEN", InvoiceStatus.PENDING, now + timedelta(minutes=1)),
        )

        await reconciliation.expire_holds()

        async with test_session_factory() as session:
            statuses = dict((await session.execute(select(Invoice.invoice_number, Invoice.status))).all())
        assert statuses == {
            "INV-OVERDUE": InvoiceStatus.FAILED,
            "INV-PAID": InvoiceStatus.PAID,
            "INV-OPEN": InvoiceStatus.PENDING,
        }


class TestStatusDerivation:
    """Status flags follow maintenance windows covering today."""

    @pytest.mark.asyncio
    async def test_lawn_is_out_of_service_during_window(
        self, reconciliation, test_session_factory, frozen_clock, make_resource, add_records
    ):
        lawn = await make_resource(ResourceKind.LAWN)
        today = frozen_clock.today()
        await add_records(MaintenanceWindow(resource_id=lawn.id, start_date=today, end_date=today + timedelta(days=2)))

        counts = await reconciliation.derive_statuses(ResourceKind.LAWN)

        assert counts == {"blocked": 1, "restored": 0}
        stored = await reload(test_session_factory, Resource, lawn.id)
        assert stored.is_out_of_service is True
        assert stored.is_active is True

        frozen_clock.advance(days=3)
        counts = await reconciliation.derive_statuses(ResourceKind.LAWN)

        assert counts == {"blocked": 0, "restored": 1}
        assert (await reload(test_session_factory, Resource, lawn.id)).is_out_of_service is False

    @pytest.mark.asyncio
    async def test_room_is_inactive_during_window(
        self, reconciliation, test_session_factory, frozen_clock, make_resource, add_records
    ):
        room = await make_resource(ResourceKind.ROOM)
        today = frozen_clock.today()
        await add_records(MaintenanceWindow(resource_id=room.id, start_date=today - timedelta(days=1), end_date=today))

        await reconciliation.derive_statuses(ResourceKind.ROOM)
        assert (await reload(test_session_factory, Resource, room.id)).is_active is False

        frozen_clock.advance(days=1)
        await reconciliation.derive_statuses(ResourceKind.ROOM)
        assert (await reload(test_session_factory, Resource, room.id)).is_active is True

    @pytest.mark.asyncio
    async def test_future_window_does_not_block_yet(
        self, reconciliation, test_session_factory, frozen_clock, make_resource, add_records, lawn_maintenance_window
    ):
        lawn = await make_resource(ResourceKind.LAWN)
        await add_records(MaintenanceWindow(resource_id=lawn.id, **lawn_maintenance_window))

        assert await reconciliation.derive_statuses(ResourceKind.LAWN) == {"blocked": 0, "restored": 0}

    @pytest.mark.asyncio
    async def test_overlapping_windows_keep_resource_blocked(
        self, reconciliation, test_session_factory, frozen_clock, make_resource, add_records
    ):
        hall = await make_resource(ResourceKind.HALL)
        today = frozen_clock.today()
        await add_records(
            MaintenanceWindow(resource_id=hall.id, start_date=today, end_date=today),
            MaintenanceWindow(resource_id=hall.id, start_date=today, end_date=today + timedelta(days=4)),
        )

        await reconciliation.derive_statuses(ResourceKind.HALL)
        frozen_clock.advance(days=1)
        counts = await reconciliation.derive_statuses(ResourceKind.HALL)

        assert counts == {"blocked": 0, "restored": 0}
        assert (await reload(test_session_factory, Resource, hall.id)).is_active is False

    @pytest.mark.asyncio
    async def test_manually_deactivated_resource_without_window_is_restored(
        self, reconciliation, test_session_factory, make_resource
    ):
        room = await make_resource(ResourceKind.ROOM, is_active=False)

        counts = await reconciliation.derive_statuses(ResourceKind.ROOM)

        assert counts["restored"] == 1
        assert (await reload(test_session_factory, Resource, room.id)).is_active is True

    @pytest.mark.asyncio
    async def test_derive_all_statuses_touches_only_each_kind(
        self, reconciliation, test_session_factory, frozen_clock, make_resource, add_records
    ):
        lawn = await make_resource(ResourceKind.LAWN)
        room = await make_resource(ResourceKind.ROOM)
        today = frozen_clock.today()
        await add_records(MaintenanceWindow(resource_id=lawn.id, start_date=today, end_date=today))

        results = await reconciliation.derive_all_statuses()

        assert set(results) == {"ROOM", "HALL", "LAWN", "PHOTOSHOOT"}
        assert results["LAWN"]["blocked"] == 1
        assert results["ROOM"] == {"blocked": 0, "restored": 0}
        assert (await reload(test_session_factory, Resource, room.id)).is_active is True


class TestReservationFlags:
    """Room reservation flags follow reservations covering today."""

    @pytest.mark.asyncio
    async def test_room_reserved_while_reservation_covers_today(
        self, reconciliation, test_session_factory, frozen_clock, make_resource, add_records
    ):
        room = await make_resource(ResourceKind.ROOM)
        today = frozen_clock.today()
        await add_records(Reservation(
            resource_id=room.id, reserved_from=today, reserved_to=today + timedelta(days=2), reserved_by="admin-1",
        ))

        assert await reconciliation.refresh_reservation_flags() == {"reserved": 1, "released": 0}
        assert (await reload(test_session_factory, Resource, room.id)).is_reserved is True

        # Check-out day is exclusive
        frozen_clock.advance(days=2)
        assert await reconciliation.refresh_reservation_flags() == {"reserved": 0, "released": 1}
        assert (await reload(test_session_factory, Resource, room.id)).is_reserved is False

    @pytest.mark.asyncio
    async def test_halls_are_not_flagged(self, reconciliation, test_session_factory, frozen_clock, make_resource, add_records):
        hall = await make_resource(ResourceKind.HALL)
        today = frozen_clock.today()
        await add_records(Reservation(
            resource_id=hall.id, reserved_from=today, reserved_to=today + timedelta(days=1), reserved_by="admin-1",
        ))

        await reconciliation.refresh_reservation_flags()

        assert (await reload(test_session_factory, Resource, hall.id)).is_reserved is False


class TestRetention:
    """Finished maintenance windows are purged after the retention horizon."""

    @pytest.mark.asyncio
    async def test_old_windows_are_purged(self, reconciliation, test_session_factory, frozen_clock, make_resource, add_records):
        lawn = await make_resource(ResourceKind.LAWN)
        today = frozen_clock.today()
        old, recent, upcoming = await add_records(
            MaintenanceWindow(resource_id=lawn.id, start_date=today - timedelta(days=45), end_date=today - timedelta(days=31)),
            MaintenanceWindow(resource_id=lawn.id, start_date=today - timedelta(days=40), end_date=today - timedelta(days=30)),
            MaintenanceWindow(resource_id=lawn.id, start_date=date(2025, 6, 1), end_date=date(2025, 6, 10)),
        )

        assert await reconciliation.purge_maintenance_windows() == 1

        assert await reload(test_session_factory, MaintenanceWindow, old.id) is None
        assert await reload(test_session_factory, MaintenanceWindow, recent.id) is not None
        assert await reload(test_session_factory, MaintenanceWindow, upcoming.id) is not None


class TestRetries:
    """Transient write conflicts are retried, then given up on."""

    @pytest.mark.asyncio
    async def test_transaction_retried_after_lock_error(self, test_session_factory):
        attempts = []

        async def flaky(db):
            attempts.append(1)
            if len(attempts) < 3:
                raise database_locked()
            return "done"

        result = await run_in_transaction(test_session_factory, flaky, operation="flaky", max_attempts=5)

        assert result == "done"
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_transaction_gives_up_after_max_attempts(self, test_session_factory):
        attempts = []

        async def always_locked(db):
            attempts.append(1)
            raise database_locked()

        with pytest.raises(TransientWriteConflictError) as exc_info:
            await run_in_transaction(test_session_factory, always_locked, operation="stuck", max_attempts=2)

        assert len(attempts) == 2
        assert exc_info.value.status_code == 503
        assert exc_info.value.headers["Retry-After"] == "1"
        assert exc_info.value.problem_details["operation"] == "stuck"

    @pytest.mark.asyncio
    async def test_non_transient_errors_are_not_retried(self, test_session_factory):
        attempts = []

        async def broken(db):
            attempts.append(1)
            raise OperationalError("SELECT", {}, Exception("no such table: widgets"))

        with pytest.raises(OperationalError):
            await run_in_transaction(test_session_factory, broken, operation="broken", max_attempts=5)

        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_pass_gives_up_quietly(self, reconciliation, test_settings):
        async def always_locked(db):
            raise database_locked()

        result = await reconciliation._run_pass("expire_holds", always_locked)

        assert result is None

    @pytest.mark.asyncio
    async def test_run_all_executes_every_pass(
        self, reconciliation, test_session_factory, frozen_clock, test_settings, make_resource, add_records
    ):
        lawn = await make_resource(ResourceKind.LAWN)
        today = frozen_clock.today()
        await add_records(MaintenanceWindow(resource_id=lawn.id, start_date=today, end_date=today))
        await acquire(test_session_factory, frozen_clock, test_settings, lawn.id, "member-a")
        frozen_clock.advance(minutes=5)

        await reconciliation.run_all()

        stored = await reload(test_session_factory, Resource, lawn.id)
        assert stored.is_out_of_service is True
        async with test_session_factory() as session:
            hold = (await session.execute(select(Hold).where(Hold.resource_id == lawn.id))).scalar_one()
        assert hold.on_hold is False
