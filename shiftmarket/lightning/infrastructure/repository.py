"""Repository for Payment entities.

Provides data access abstraction following the Repository pattern. The payment
service only sees ``PaymentRepository``; the storage behind it is pluggable.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from shiftmarket.lightning.domain.models import Payment


class PaymentRepository(Protocol):
    """Keyed store of Payments (key = payment hash)."""

    def get(self, payment_hash: str) -> Payment | None: ...

    def put(self, payment: Payment) -> Payment: ...

    def list(self, predicate: Callable[[Payment], bool] | None = None) -> list[Payment]: ...


class InMemoryPaymentRepository:
    """Process-lifetime Payment store."""

    def __init__(self) -> None:
        self._payments: dict[str, Payment] = {}

    def get(self, payment_hash: str) -> Payment | None:
        """Find payment by hash."""
        return self._payments.get(payment_hash)

    def put(self, payment: Payment) -> Payment:
        """Save or update a payment."""
        self._payments[payment.payment_hash] = payment
        return payment

    def list(self, predicate: Callable[[Payment], bool] | None = None) -> list[Payment]:
        """All payments matching `predicate`, in insertion order."""
        payments = list(self._payments.values())
        if predicate is None:
            return payments
        return [payment for payment in payments if predicate(payment)]

    def __len__(self) -> int:
        return len(self._payments)
