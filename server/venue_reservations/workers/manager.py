"""Worker manager for coordinating background tasks."""

import asyncio
import logging
from typing import Dict

from ..core.clock import Clock
from ..core.config import Settings
from ..services.reconciliation import ReconciliationService
from .base import BaseWorker
from .reconciliation_workers import (
    HoldExpiryWorker,
    MaintenanceRetentionWorker,
    ReservationStatusWorker,
    StatusDerivationWorker,
)

logger = logging.getLogger(__name__)


class WorkerManager:
    """
    Manages background workers for the application.

    Coordinates starting, stopping, and monitoring of all background workers.
    """

    def __init__(self, service: ReconciliationService, interval_seconds: float):
        """
        Initialize the worker manager.

        Args:
            service: Reconciliation service the workers run passes on
            interval_seconds: Period shared by every pass
        """
        self.workers: Dict[str, BaseWorker] = {
            "hold_expiry": HoldExpiryWorker(service, interval_seconds),
            "status_derivation": StatusDerivationWorker(service, interval_seconds),
            "reservation_status": ReservationStatusWorker(service, interval_seconds),
            "maintenance_retention": MaintenanceRetentionWorker(service, interval_seconds),
        }
        logger.info(f"Initialized {len(self.workers)} workers")

    @classmethod
    def from_settings(cls, session_factory, clock: Clock, settings: Settings) -> "WorkerManager":
        service = ReconciliationService(session_factory, clock, settings)
        return cls(service, settings.scheduler_interval_seconds)

    async def start_all(self) -> None:
        """Start all workers."""
        logger.info("Starting all workers")

        for name, worker in self.workers.items():
            await worker.start()
            logger.info(f"Started worker: {name}")

        logger.info(f"Started {len(self.workers)} workers")

    async def stop_all(self) -> None:
        """Stop all workers gracefully."""
        logger.info("Stopping all workers")

        results = await asyncio.gather(
            *(worker.stop() for worker in self.workers.values()),
            return_exceptions=True,
        )

        for name, result in zip(self.workers.keys(), results):
            if isinstance(result, Exception):
                logger.error(f"Error stopping worker {name}: {str(result)}")
            else:
                logger.info(f"Stopped worker: {name}")

        logger.info("All workers stopped")

    def get_worker(self, name: str) -> BaseWorker:
        """
        Get a specific worker by name.

        Raises:
            KeyError: If worker not found
        """
        return self.workers[name]

    def get_worker_status(self) -> Dict[str, bool]:
        """Map worker names to their running status."""
        return {name: worker.running for name, worker in self.workers.items()}
