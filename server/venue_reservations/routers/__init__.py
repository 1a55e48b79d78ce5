"""FastAPI routers package."""

from .availability import router as availability_router
from .health import router as health_router
from .hold import router as hold_router
from .invoice import router as invoice_router
from .metrics import router as metrics_router
from .payment import router as payment_router

__all__ = [
    "availability_router",
    "health_router",
    "hold_router",
    "invoice_router",
    "metrics_router",
    "payment_router",
]
