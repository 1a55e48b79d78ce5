"""Background workers running the reconciliation passes."""

import logging

from ..models.resource import ResourceKind
from ..services.reconciliation import ReconciliationService
from .base import BaseWorker

logger = logging.getLogger(__name__)


class HoldExpiryWorker(BaseWorker):
    """
    Background worker that clears holds past their expiry.

    Holds already stop counting as active at expiry; this pass only tidies
    the rows so that status readers see them as free.
    """

    def __init__(self, service: ReconciliationService, interval_seconds: float = 10):
        super().__init__(name="HoldExpiry", interval_seconds=interval_seconds)
        self.service = service

    async def process(self) -> None:
        await self.service.expire_holds()


class StatusDerivationWorker(BaseWorker):
    """
    Background worker that derives resource status from maintenance windows.

    Each kind is recomputed in its own transaction.
    """

    def __init__(self, service: ReconciliationService, interval_seconds: float = 10):
        super().__init__(name="StatusDerivation", interval_seconds=interval_seconds)
        self.service = service

    async def process(self) -> None:
        for kind in ResourceKind:
            await self.service.derive_statuses(kind)


class ReservationStatusWorker(BaseWorker):
    """Background worker that recomputes the rooms' reserved-today flag."""

    def __init__(self, service: ReconciliationService, interval_seconds: float = 10):
        super().__init__(name="ReservationStatus", interval_seconds=interval_seconds)
        self.service = service

    async def process(self) -> None:
        await self.service.refresh_reservation_flags()


class MaintenanceRetentionWorker(BaseWorker):
    """Background worker that deletes maintenance windows past retention."""

    def __init__(self, service: ReconciliationService, interval_seconds: float = 10):
        super().__init__(name="MaintenanceRetention", interval_seconds=interval_seconds)
        self.service = service

    async def process(self) -> None:
        await self.service.purge_maintenance_windows()
