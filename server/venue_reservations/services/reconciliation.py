"""Reconciliation passes run periodically by the scheduler."""

import logging
import time
from datetime import timedelta
from typing import Awaitable, Callable, Dict, Optional, Tuple, TypeVar

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.clock import Clock
from ..core.config import Settings
from ..core.database import run_in_transaction
from ..core.exceptions import TransientWriteConflictError
from ..core.observability import metrics_collector
from ..models.hold import Hold
from ..models.invoice import Invoice, InvoiceStatus
from ..models.maintenance import MaintenanceWindow
from ..models.reservation import Reservation
from ..models.resource import Resource, ResourceKind

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ReconciliationService:
    """
    Service for the scheduler's reconciliation passes.

    Every pass is idempotent and recomputes its result from the source
    records, so a skipped or failed run is repaired by the next one. Each
    pass runs in its own transaction and is retried on deadlocks and
    serialization failures; when the retries run out the pass is logged as
    failed and returns None.
    """

    def __init__(self, session_factory: async_sessionmaker, clock: Clock, settings: Settings):
        self.session_factory = session_factory
        self.clock = clock
        self.settings = settings

    async def _run_pass(self, pass_name: str, work: Callable[[AsyncSession], Awaitable[T]]) -> Optional[T]:
        started = time.perf_counter()
        try:
            return await run_in_transaction(
                self.session_factory,
                work,
                operation=pass_name,
                max_attempts=self.settings.scheduler_max_retries,
                backoff_seconds=self.settings.scheduler_retry_backoff_seconds,
            )
        except TransientWriteConflictError as e:
            metrics_collector.record_pass_failure(pass_name)
            logger.error(
                f"Reconciliation pass {pass_name} gave up; next run will retry",
                extra={"pass_name": pass_name, "attempts": e.problem_details.get("attempts")},
            )
            return None
        finally:
            metrics_collector.observe_pass_duration(pass_name, time.perf_counter() - started)

    async def expire_holds(self) -> Optional[int]:
        """
        Clear every hold whose expiry has passed and fail overdue invoices.

        A pending invoice whose due time has passed can no longer be paid,
        so it is failed in the same transaction that frees its holds.

        Returns:
            Number of holds cleared, or None if the pass gave up
        """
        now = self.clock.now()

        async def work(db: AsyncSession) -> Tuple[int, int]:
            result = await db.execute(
                update(Hold)
                .where(Hold.on_hold.is_(True), Hold.hold_expiry < now)
                .values(on_hold=False, hold_expiry=None, hold_by=None, acquired_at=None)
                .execution_options(synchronize_session=False)
            )
            overdue = await db.execute(
                update(Invoice)
                .where(Invoice.status == InvoiceStatus.PENDING, Invoice.due_at < now)
                .values(status=InvoiceStatus.FAILED)
                .execution_options(synchronize_session=False)
            )
            active = await db.execute(
                select(func.count(Hold.id)).where(Hold.on_hold.is_(True), Hold.hold_expiry >= now)
            )
            metrics_collector.set_active_holds(active.scalar_one())
            return result.rowcount, overdue.rowcount

        counts = await self._run_pass("expire_holds", work)
        if counts is None:
            return None

        expired, failed_invoices = counts
        if failed_invoices:
            metrics_collector.record_invoices_expired(failed_invoices)
            logger.info(
                f"Failed {failed_invoices} overdue invoices",
                extra={"failed_count": failed_invoices, "timestamp": now.isoformat()},
            )
        if expired:
            metrics_collector.record_holds_expired(expired)
            logger.info(
                f"Expired {expired} holds",
                extra={"expired_count": expired, "timestamp": now.isoformat()},
            )
        return expired

    async def derive_statuses(self, kind: ResourceKind) -> Optional[Dict[str, int]]:
        """
        Recompute the maintenance status flag of every resource of one kind.

        A resource is blocked while any maintenance window covers today.
        Lawns use `is_out_of_service`, every other kind uses `is_active`.
        Blocking and restoring happen in the same transaction.

        Returns:
            Counts of blocked and restored resources, or None if the pass gave up
        """
        today = self.clock.today()
        flag = getattr(Resource, kind.status_flag)
        # Value of the flag while the resource is under maintenance
        blocked_value = kind == ResourceKind.LAWN

        covered = select(MaintenanceWindow.resource_id).where(
            MaintenanceWindow.start_date <= today,
            MaintenanceWindow.end_date >= today,
        )

        async def work(db: AsyncSession) -> Dict[str, int]:
            blocked = await db.execute(
                update(Resource)
                .where(Resource.kind == kind.value, Resource.id.in_(covered), flag != blocked_value)
                .values({kind.status_flag: blocked_value})
                .execution_options(synchronize_session=False)
            )
            restored = await db.execute(
                update(Resource)
                .where(Resource.kind == kind.value, Resource.id.not_in(covered), flag == blocked_value)
                .values({kind.status_flag: not blocked_value})
                .execution_options(synchronize_session=False)
            )
            return {"blocked": blocked.rowcount, "restored": restored.rowcount}

        counts = await self._run_pass(f"derive_status_{kind.value.lower()}", work)
        if counts:
            for change, count in counts.items():
                if count:
                    metrics_collector.record_status_change(kind.value, change, count)
            if counts["blocked"] or counts["restored"]:
                logger.info(
                    f"Updated {kind.value.lower()} statuses from maintenance windows",
                    extra={"kind": kind.value, "today": today.isoformat(), **counts},
                )
        return counts

    async def derive_all_statuses(self) -> Dict[str, Optional[Dict[str, int]]]:
        """Run the status derivation pass once per resource kind."""
        return {kind.value: await self.derive_statuses(kind) for kind in ResourceKind}

    async def refresh_reservation_flags(self) -> Optional[Dict[str, int]]:
        """
        Recompute `is_reserved` for rooms from admin reservations covering today.

        Returns:
            Counts of flags set and cleared, or None if the pass gave up
        """
        today = self.clock.today()
        covered = select(Reservation.resource_id).where(
            Reservation.reserved_from <= today,
            Reservation.reserved_to > today,
        )
        rooms = Resource.kind == ResourceKind.ROOM.value

        async def work(db: AsyncSession) -> Dict[str, int]:
            reserved = await db.execute(
                update(Resource)
                .where(and_(rooms, Resource.id.in_(covered), Resource.is_reserved.is_(False)))
                .values(is_reserved=True)
                .execution_options(synchronize_session=False)
            )
            released = await db.execute(
                update(Resource)
                .where(and_(rooms, Resource.id.not_in(covered), Resource.is_reserved.is_(True)))
                .values(is_reserved=False)
                .execution_options(synchronize_session=False)
            )
            return {"reserved": reserved.rowcount, "released": released.rowcount}

        counts = await self._run_pass("refresh_reservation_flags", work)
        if counts and (counts["reserved"] or counts["released"]):
            logger.info(
                "Updated room reservation flags",
                extra={"today": today.isoformat(), **counts},
            )
        return counts

    async def purge_maintenance_windows(self) -> Optional[int]:
        """
        Delete maintenance windows that ended before the retention horizon.

        Returns:
            Number of windows deleted, or None if the pass gave up
        """
        horizon = self.clock.today() - timedelta(days=self.settings.maintenance_retention_days)

        async def work(db: AsyncSession) -> int:
            result = await db.execute(
                delete(MaintenanceWindow)
                .where(MaintenanceWindow.end_date < horizon)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

        purged = await self._run_pass("purge_maintenance_windows", work)
        if purged:
            logger.info(
                f"Purged {purged} maintenance windows",
                extra={"purged_count": purged, "horizon": horizon.isoformat()},
            )
        return purged

    async def run_all(self) -> None:
        """Run every pass once, in dependency-free order."""
        await self.expire_holds()
        await self.derive_all_statuses()
        await self.refresh_reservation_flags()
        await self.purge_maintenance_windows()
