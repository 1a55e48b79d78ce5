"""Hold manager: short-lived exclusive claims on resources."""

import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock
from ..core.config import Settings
from ..core.database import lock_resource
from ..core.exceptions import HoldConflictError, NotFoundError
from ..core.observability import metrics_collector
from ..models.hold import Hold
from ..models.resource import Resource

logger = logging.getLogger(__name__)


class HoldService:
    """
    Service for hold operations.

    Methods never commit; callers own the transaction so that a hold can be
    acquired atomically with the availability re-check that precedes it.
    """

    def __init__(self, db: AsyncSession, clock: Clock, settings: Settings):
        self.db = db
        self.clock = clock
        self.settings = settings

    async def get_resource(self, resource_id: UUID) -> Resource:
        """
        Get a resource by ID.

        Raises:
            NotFoundError: If the resource does not exist
        """
        resource = await self.db.get(Resource, resource_id)
        if resource is None:
            raise NotFoundError(resource_type="resource", resource_id=str(resource_id))
        return resource

    async def _ensure_hold_row(self, resource_id: UUID) -> None:
        """Create the resource's hold row if it does not exist yet."""
        dialect = self.db.get_bind().dialect.name
        insert = pg_insert if dialect == "postgresql" else sqlite_insert
        stmt = (
            insert(Hold)
            .values(id=uuid4(), resource_id=resource_id, on_hold=False)
            .on_conflict_do_nothing(index_elements=["resource_id"])
        )
        await self.db.execute(stmt)

    async def _load_hold(self, resource_id: UUID) -> Optional[Hold]:
        stmt = (
            select(Hold)
            .where(Hold.resource_id == resource_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def find_active_hold(self, resource_id: UUID) -> Optional[Hold]:
        """Get the hold on a resource if it is active right now."""
        now = self.clock.now()
        stmt = (
            select(Hold)
            .where(
                Hold.resource_id == resource_id,
                Hold.on_hold.is_(True),
                Hold.hold_expiry > now,
            )
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def acquire_hold(
        self,
        resource_id: UUID,
        requester_id: str,
        ttl_seconds: Optional[int] = None,
    ) -> Hold:
        """
        Acquire or extend a hold on a resource.

        The claim is a single conditional UPDATE that only matches when the
        hold is free, expired, or already owned by the requester. An owner
        re-acquiring keeps the original `acquired_at` and gets a new expiry.

        Args:
            resource_id: Resource to hold
            requester_id: Member claiming the resource
            ttl_seconds: Hold lifetime; defaults to the kind's configured TTL

        Returns:
            The active hold

        Raises:
            NotFoundError: If the resource does not exist
            HoldConflictError: If another requester holds the resource
        """
        resource = await self.get_resource(resource_id)
        now = self.clock.now()
        ttl = ttl_seconds or self.settings.hold_ttl_for(resource.kind)
        expiry = now + timedelta(seconds=ttl)

        await lock_resource(self.db, resource_id)
        await self._ensure_hold_row(resource_id)

        still_owned = and_(
            Hold.on_hold.is_(True),
            Hold.hold_by == requester_id,
            Hold.hold_expiry > now,
        )
        stmt = (
            update(Hold)
            .where(
                Hold.resource_id == resource_id,
                or_(
                    Hold.on_hold.is_(False),
                    Hold.hold_expiry.is_(None),
                    Hold.hold_expiry <= now,
                    Hold.hold_by == requester_id,
                ),
            )
            .values(
                on_hold=True,
                hold_by=requester_id,
                hold_expiry=expiry,
                acquired_at=case((still_owned, Hold.acquired_at), else_=now),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)

        if result.rowcount == 0:
            current = await self._load_hold(resource_id)
            metrics_collector.record_hold_conflict(resource.kind)
            logger.info(
                "Hold acquisition rejected",
                extra={
                    "resource_id": str(resource_id),
                    "requester_id": requester_id,
                    "hold_expiry": current.hold_expiry.isoformat() if current and current.hold_expiry else None,
                },
            )
            raise HoldConflictError(
                resource_id=str(resource_id),
                resource_name=resource.name,
                hold_expiry=current.hold_expiry if current else None,
            )

        hold = await self._load_hold(resource_id)
        metrics_collector.record_hold_acquired(resource.kind)
        logger.info(
            "Hold acquired",
            extra={
                "resource_id": str(resource_id),
                "requester_id": requester_id,
                "hold_expiry": expiry.isoformat(),
                "ttl_seconds": ttl,
            },
        )
        return hold

    async def release_if_held_by(self, resource_id: UUID, requester_id: str, reason: str) -> bool:
        """
        Clear the hold if `requester_id` owns it. Never raises on conflict.

        Used for compensating releases, where the hold may already have
        expired and moved on to someone else.
        """
        await lock_resource(self.db, resource_id)
        stmt = (
            update(Hold)
            .where(
                Hold.resource_id == resource_id,
                Hold.on_hold.is_(True),
                Hold.hold_by == requester_id,
            )
            .values(on_hold=False, hold_by=None, hold_expiry=None, acquired_at=None)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        released = result.rowcount > 0

        if released:
            metrics_collector.record_hold_released(reason)
            logger.info(
                "Hold released",
                extra={"resource_id": str(resource_id), "requester_id": requester_id, "reason": reason},
            )
        return released

    async def release_hold(self, resource_id: UUID, requester_id: str, reason: str = "voluntary") -> bool:
        """
        Release the requester's own hold.

        Returns:
            True if a hold was cleared, False if there was nothing to release

        Raises:
            NotFoundError: If the resource does not exist
            HoldConflictError: If another requester holds the resource
        """
        resource = await self.get_resource(resource_id)
        if await self.release_if_held_by(resource_id, requester_id, reason):
            return True

        current = await self.find_active_hold(resource_id)
        if current is not None:
            raise HoldConflictError(
                resource_id=str(resource_id),
                resource_name=resource.name,
                hold_expiry=current.hold_expiry,
            )
        return False

    async def count_active_holds(self, now: Optional[datetime] = None) -> int:
        now = now or self.clock.now()
        result = await self.db.execute(
            select(func.count(Hold.id)).where(Hold.on_hold.is_(True), Hold.hold_expiry > now)
        )
        return result.scalar_one()
