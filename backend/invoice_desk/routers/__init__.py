"""API routers package."""

from .auth import router as auth_router
from .exchange_rate import router as exchange_rate_router
from .invoices import router as invoice_router
from .metrics import router as metrics_router
from .system import router as system_router

__all__ = [
    "auth_router",
    "exchange_rate_router",
    "invoice_router",
    "metrics_router",
    "system_router",
]
