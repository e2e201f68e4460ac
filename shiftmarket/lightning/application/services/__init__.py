"""Application services for escrow payments."""

from .payment_service import (
    RECOMMENDED_POLL_INTERVAL_SECONDS,
    PaymentLifecycleManager,
    create_payment_service,
)

__all__ = [
    "RECOMMENDED_POLL_INTERVAL_SECONDS",
    "PaymentLifecycleManager",
    "create_payment_service",
]
