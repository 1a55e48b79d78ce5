"""Background workers for the reconciliation scheduler."""

from .manager import WorkerManager
from .reconciliation_workers import (
    HoldExpiryWorker,
    MaintenanceRetentionWorker,
    ReservationStatusWorker,
    StatusDerivationWorker,
)

__all__ = [
    "WorkerManager",
    "HoldExpiryWorker",
    "StatusDerivationWorker",
    "ReservationStatusWorker",
    "MaintenanceRetentionWorker",
]
