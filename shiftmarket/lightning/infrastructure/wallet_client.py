"""Wallet collaborator.

The payment path needs three wallet operations: create an invoice, look one
up, and pay one. ``WalletClient`` is the protocol the payment service depends
on; ``AlbyWalletClient`` implements it against the Alby HTTP API.
"""

from datetime import datetime
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as SchemaError

from shiftmarket.exceptions import ConfigurationError, WalletError
from shiftmarket.lightning.domain.value_objects import (
    CreatedInvoice,
    InvoiceLookup,
    SendPaymentResult,
)
from shiftmarket.utils.config import Settings, get_settings
from shiftmarket.utils.logging import get_logger

logger = get_logger(__name__)


class WalletClient(Protocol):
    """Invoicing and payment-send operations used by the payment service."""

    async def create_invoice(
        self, amount_sats: int, description: str, metadata: dict[str, Any]
    ) -> CreatedInvoice: ...

    async def lookup_invoice(self, payment_hash: str) -> InvoiceLookup: ...

    async def send_payment(self, invoice: str) -> SendPaymentResult: ...


class _InvoiceCreated(BaseModel):
    model_config = ConfigDict(extra="ignore")

    payment_request: str
    payment_hash: str


class _InvoiceState(BaseModel):
    model_config = ConfigDict(extra="ignore")

    settled: bool = False
    settled_at: datetime | None = None
    state: str | None = None


class _PaymentSent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    payment_preimage: str | None = None
    payment_hash: str | None = None


class AlbyWalletClient:
    """Wallet client for the Alby HTTP API."""

    def __init__(
        self,
        api_url: str,
        api_token: str,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the wallet client.

        Args:
            api_url: Base URL of the wallet API
            api_token: Bearer token
            timeout_seconds: Request timeout
            client: Pre-configured HTTP client (tests)
        """
        self.api_url = api_url.rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=self.api_url,
            timeout=httpx.Timeout(timeout_seconds, connect=5.0),
            headers={
                "Authorization": f"Bearer {api_token}",
                "Content-Type": "application/json",
                "User-Agent": "shiftmarket/0.1",
            },
        )

    async def close(self) -> None:
        """Close the HTTP client if this wallet created it."""
        if self._owns_client:
            await self.client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise WalletError(
                f"Wallet request failed: {method} {path}", service="wallet", original_error=e
            ) from e

        if not response.is_success:
            raise WalletError(
                f"Wallet returned an error: {method} {path}",
                service="wallet",
                status_code=response.status_code,
                remote_message=response.text,
            )

        try:
            return response.json()
        except ValueError as e:
            raise WalletError(
                "Wallet returned invalid JSON", service="wallet", original_error=e
            ) from e

    async def create_invoice(
        self, amount_sats: int, description: str, metadata: dict[str, Any]
    ) -> CreatedInvoice:
        """Create an invoice for `amount_sats`."""
        payload = await self._request(
            "POST",
            "/invoices",
            json={"amount": amount_sats, "description": description, "metadata": metadata},
        )
        try:
            created = _InvoiceCreated.model_validate(payload)
        except SchemaError as e:
            raise WalletError(
                "Wallet invoice response is missing fields", service="wallet", original_error=e
            ) from e

        logger.debug("wallet_invoice_created", payment_hash=created.payment_hash[:16])
        return CreatedInvoice(invoice=created.payment_request, payment_hash=created.payment_hash)

    async def lookup_invoice(self, payment_hash: str) -> InvoiceLookup:
        """Look up an invoice's settlement state."""
        payload = await self._request("GET", f"/invoices/{payment_hash}")
        try:
            state = _InvoiceState.model_validate(payload)
        except SchemaError as e:
            raise WalletError(
                "Wallet invoice lookup returned an invalid response",
                service="wallet",
                original_error=e,
            ) from e

        return InvoiceLookup(
            settled=state.settled,
            settled_at=state.settled_at,
            expired=(state.state or "").upper() == "EXPIRED",
        )

    async def send_payment(self, invoice: str) -> SendPaymentResult:
        """Pay a bolt11 invoice."""
        payload = await self._request("POST", "/payments/bolt11", json={"invoice": invoice})
        try:
            sent = _PaymentSent.model_validate(payload)
        except SchemaError as e:
            raise WalletError(
                "Wallet payment response is invalid", service="wallet", original_error=e
            ) from e

        if not sent.payment_preimage:
            raise WalletError("Wallet payment returned no preimage", service="wallet")
        return SendPaymentResult(preimage=sent.payment_preimage)


def create_wallet_client(settings: Settings | None = None) -> AlbyWalletClient:
    """Factory function to create the wallet client from settings.

    Raises:
        ConfigurationError: If no wallet token is configured
    """
    settings = settings or get_settings()
    if settings.wallet_api_token is None:
        raise ConfigurationError(
            "Wallet API token is not configured",
            setting="SHIFTMARKET_WALLET_API_TOKEN",
            expected="Alby API access token",
        )

    return AlbyWalletClient(
        api_url=settings.wallet_api_url,
        api_token=settings.wallet_api_token.get_secret_value(),
        timeout_seconds=settings.http_timeout_seconds,
    )
