"""Exception hierarchy for shiftmarket.

All errors carry a human-readable message plus structured context so that
callers can log them with structlog without string parsing.

Usage:
    from shiftmarket.exceptions import PaymentNotReadyError

    try:
        await manager.payout(payment_hash, address)
    except PaymentNotReadyError as e:
        logger.warning("payout_rejected", error=str(e), context=e.context)
"""

from __future__ import annotations

from typing import Any


class ShiftMarketError(Exception):
    """Base exception for all shiftmarket errors.

    Attributes:
        message: Human-readable error message
        context: Additional context for debugging (dict)
        original_error: Original exception if wrapped
    """

    def __init__(
        self,
        message: str,
        *,
        context: dict[str, Any] | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.original_error = original_error

    def __str__(self) -> str:
        base = self.message
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base = f"{base} ({ctx_str})"
        if self.original_error:
            base = f"{base} [caused by: {type(self.original_error).__name__}]"
        return base

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, context={self.context!r})"


# =============================================================================
# Validation & Input Errors
# =============================================================================


class ValidationError(ShiftMarketError):
    """Raised when caller input is invalid.

    Always raised before any network call is made.
    """

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        constraint: str | None = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if field:
            context["field"] = field
        if value is not None:
            context["value"] = str(value)[:100]  # Truncate for safety
        if constraint:
            context["constraint"] = constraint
        kwargs["context"] = context
        super().__init__(message, **kwargs)


class InvalidAddressError(ValidationError):
    """Raised when a Lightning address fails the syntactic pre-check."""


class MalformedAddressError(ValidationError):
    """Raised when a Lightning address cannot be split into name and domain."""


class ConfigurationError(ShiftMarketError):
    """Raised when application configuration is invalid or missing."""

    def __init__(
        self,
        message: str,
        *,
        setting: str | None = None,
        expected: str | None = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if setting:
            context["setting"] = setting
        if expected:
            context["expected"] = expected
        kwargs["context"] = context
        super().__init__(message, **kwargs)


# =============================================================================
# Protocol Query Errors
# =============================================================================


class QueryFailure(ShiftMarketError):
    """Raised when the underlying relay query fails as a whole.

    A query that merely times out is not a failure: it yields the partial
    result collected so far.
    """

    def __init__(
        self,
        message: str,
        *,
        relays: list[str] | None = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if relays:
            context["relays"] = ",".join(relays)
        kwargs["context"] = context
        super().__init__(message, **kwargs)


# =============================================================================
# Business Logic Errors
# =============================================================================


class BusinessLogicError(ShiftMarketError):
    """Base class for business rule violations."""


class PaymentNotReadyError(BusinessLogicError):
    """Raised when a payout is requested for a Payment that is not `paid`."""

    def __init__(
        self,
        message: str,
        *,
        payment_hash: str | None = None,
        current_status: str | None = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if payment_hash:
            context["payment_hash"] = payment_hash
        if current_status:
            context["current_status"] = current_status
        kwargs["context"] = context
        super().__init__(message, **kwargs)


class PaymentNotFoundError(PaymentNotReadyError):
    """Raised when no Payment exists for a payment hash."""


class PaymentAlreadySettledError(PaymentNotReadyError):
    """Raised when a payout is retried for a Payment that was already paid out."""


class DuplicatePaymentError(BusinessLogicError):
    """Raised when a listing already has a live Payment."""

    def __init__(
        self,
        message: str,
        *,
        listing_id: str | None = None,
        existing_payment_hash: str | None = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if listing_id:
            context["listing_id"] = listing_id
        if existing_payment_hash:
            context["existing_payment_hash"] = existing_payment_hash
        kwargs["context"] = context
        super().__init__(message, **kwargs)


# =============================================================================
# External Integration Errors
# =============================================================================


class IntegrationError(ShiftMarketError):
    """Base class for external service integration errors."""

    def __init__(
        self,
        message: str,
        *,
        service: str | None = None,
        status_code: int | None = None,
        remote_message: str | None = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if service:
            context["service"] = service
        if status_code is not None:
            context["status_code"] = status_code
        if remote_message:
            context["remote_message"] = remote_message[:200]
        kwargs["context"] = context
        super().__init__(message, **kwargs)


class WalletError(IntegrationError):
    """Raised when the wallet (invoicing / payment-send) API call fails."""


class InvoiceCreationError(IntegrationError):
    """Raised when the invoicing collaborator cannot create an invoice."""


class AddressDiscoveryError(IntegrationError):
    """Raised when the Lightning address well-known lookup fails."""


class InvoiceRequestError(IntegrationError):
    """Raised when the Lightning address callback does not return an invoice."""


class RemoteLightningError(IntegrationError):
    """Raised when the Lightning address service answers with an error status."""


class PayoutFailedError(IntegrationError):
    """Raised when sending the seller payout fails. The Payment stays `paid`."""


class RateProviderError(IntegrationError):
    """Raised when an exchange rate provider fails."""
