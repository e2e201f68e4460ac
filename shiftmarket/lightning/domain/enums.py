"""Domain enums for escrow payments."""

from enum import Enum


class PaymentStatus(str, Enum):
    """Escrow payment status.

    Lifecycle:
        PENDING → PAID (buyer invoice settled)
        PAID → SETTLED (seller payout sent)
        PENDING → EXPIRED (invoice expired unpaid)
        PENDING → FAILED (abandoned)
    """

    PENDING = "pending"  # Invoice created, waiting for the buyer
    PAID = "paid"  # Buyer paid, funds held by the platform
    SETTLED = "settled"  # Seller payout sent
    FAILED = "failed"  # Abandoned
    EXPIRED = "expired"  # Invoice expired without payment

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        """Whether no further transition is possible."""
        return self in (PaymentStatus.SETTLED, PaymentStatus.FAILED, PaymentStatus.EXPIRED)

    @property
    def is_live(self) -> bool:
        """Whether the Payment still occupies its listing."""
        return self in (PaymentStatus.PENDING, PaymentStatus.PAID, PaymentStatus.SETTLED)
