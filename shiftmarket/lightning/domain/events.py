"""Domain events for escrow payments.

Published on the global event bus on every Payment transition.
"""

from dataclasses import dataclass
from datetime import datetime

from shiftmarket.core.events.base import BaseEvent


@dataclass(frozen=True)
class PaymentCreated(BaseEvent):
    """Event fired when a buyer invoice is created."""

    payment_hash: str
    listing_id: str
    total_amount: int
    platform_fee: int

    @property
    def context_data(self) -> dict:
        """Additional context for logging/monitoring."""
        return {
            "payment_hash": self.payment_hash,
            "listing_id": self.listing_id,
            "total_amount": self.total_amount,
        }


@dataclass(frozen=True)
class PaymentPaid(BaseEvent):
    """Event fired when the buyer invoice is observed as paid."""

    payment_hash: str
    listing_id: str
    paid_at: datetime

    @property
    def context_data(self) -> dict:
        return {
            "payment_hash": self.payment_hash,
            "listing_id": self.listing_id,
            "paid_at": self.paid_at.isoformat(),
        }


@dataclass(frozen=True)
class PaymentSettled(BaseEvent):
    """Event fired when the seller payout succeeds."""

    payment_hash: str
    listing_id: str
    amount_sats: int
    payout_tx_id: str
    lightning_address: str
    settled_at: datetime


@dataclass(frozen=True)
class PayoutFailed(BaseEvent):
    """Event fired when a seller payout attempt fails. The Payment stays paid."""

    payment_hash: str
    lightning_address: str
    reason: str


@dataclass(frozen=True)
class PaymentExpired(BaseEvent):
    """Event fired when a pending invoice expires without payment."""

    payment_hash: str
    listing_id: str
    created_at: datetime


@dataclass(frozen=True)
class PaymentFailed(BaseEvent):
    """Event fired when a pending payment is abandoned."""

    payment_hash: str
    listing_id: str
    reason: str | None = None
