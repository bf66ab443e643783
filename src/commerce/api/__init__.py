"""Commerce domain API package."""

from commerce.api.errors import register_error_handlers
from commerce.api.routes import (
    admin_router,
    cancellation_router,
    license_router,
    order_router,
    payment_router,
    refund_router,
)

__all__ = [
    "admin_router",
    "cancellation_router",
    "license_router",
    "order_router",
    "payment_router",
    "refund_router",
    "register_error_handlers",
]
