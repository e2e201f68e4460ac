"""Domain entities for escrow payments.

Entities in DDD:
- Have identity (unique ID)
- Mutable lifecycle
- Encapsulate business logic
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from shiftmarket.exceptions import BusinessLogicError

from .enums import PaymentStatus


@dataclass
class Payment:
    """One buyer → escrow → seller transaction for exactly one listing.

    Identity is the invoice payment hash. Status only moves forward:

        pending → paid → settled
        pending → expired | failed
    """

    payment_hash: str
    listing_id: str
    invoice: str
    item_price: int
    platform_fee: int
    total_amount: int
    seller_pubkey: str
    buyer_pubkey: str
    status: PaymentStatus = PaymentStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    seller_lightning_address: str | None = None
    paid_at: datetime | None = None
    settled_at: datetime | None = None
    payout_tx_id: str | None = None
    failure_reason: str | None = None

    @property
    def id(self) -> str:
        return self.payment_hash

    def __repr__(self) -> str:
        return (
            f"<Payment(hash={self.payment_hash[:8]}..., listing={self.listing_id}, "
            f"total={self.total_amount}, status='{self.status.value}')>"
        )

    def _require(self, *allowed: PaymentStatus, target: PaymentStatus) -> None:
        if self.status not in allowed:
            raise BusinessLogicError(
                f"Cannot move payment from {self.status} to {target}",
                context={"payment_hash": self.payment_hash, "status": self.status.value},
            )

    def mark_paid(self, at: datetime) -> bool:
        """Record buyer payment. Returns False if it was already recorded."""
        if self.status == PaymentStatus.PAID:
            return False
        self._require(PaymentStatus.PENDING, target=PaymentStatus.PAID)
        self.status = PaymentStatus.PAID
        if self.paid_at is None:
            self.paid_at = at
        return True

    def mark_settled(self, at: datetime, tx_id: str, lightning_address: str) -> None:
        """Record the seller payout."""
        self._require(PaymentStatus.PAID, target=PaymentStatus.SETTLED)
        self.status = PaymentStatus.SETTLED
        self.settled_at = at
        self.payout_tx_id = tx_id
        self.seller_lightning_address = lightning_address

    def mark_expired(self) -> None:
        """Invoice expired before the buyer paid."""
        self._require(PaymentStatus.PENDING, target=PaymentStatus.EXPIRED)
        self.status = PaymentStatus.EXPIRED

    def mark_failed(self, reason: str | None = None) -> None:
        """Abandon a pending payment."""
        self._require(PaymentStatus.PENDING, target=PaymentStatus.FAILED)
        self.status = PaymentStatus.FAILED
        self.failure_reason = reason

    def is_expired_at(self, now: datetime, expiry_seconds: int) -> bool:
        """Whether a pending invoice has outlived its expiry window."""
        return (
            self.status == PaymentStatus.PENDING
            and (now - self.created_at).total_seconds() >= expiry_seconds
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.payment_hash,
            "payment_hash": self.payment_hash,
            "listing_id": self.listing_id,
            "invoice": self.invoice,
            "item_price": self.item_price,
            "platform_fee": self.platform_fee,
            "total_amount": self.total_amount,
            "status": self.status.value,
            "seller_pubkey": self.seller_pubkey,
            "buyer_pubkey": self.buyer_pubkey,
            "seller_lightning_address": self.seller_lightning_address,
            "created_at": self.created_at.isoformat(),
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "settled_at": self.settled_at.isoformat() if self.settled_at else None,
            "payout_tx_id": self.payout_tx_id,
        }
