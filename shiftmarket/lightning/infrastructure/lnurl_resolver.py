"""Lightning address resolver.

Turns ``name@domain`` into a payable invoice with the two-hop LNURL-pay
exchange:

1. ``GET https://{domain}/.well-known/lnurlp/{name}`` returns a ``callback`` URL.
2. ``GET {callback}?amount={msat}`` returns ``{"pr": invoice}`` or
   ``{"status": "ERROR", "reason": ...}``.

Both responses are validated with pydantic models and fail closed.
"""

import re

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as SchemaError

from shiftmarket.exceptions import (
    AddressDiscoveryError,
    InvoiceRequestError,
    RemoteLightningError,
    ValidationError,
)
from shiftmarket.lightning.domain.value_objects import MSAT_PER_SAT, LightningAddress
from shiftmarket.utils.logging import get_logger

logger = get_logger(__name__)

_ADDRESS_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_valid_lightning_address(value: str | None) -> bool:
    """Syntactic pre-check for a payout destination.

    Accepts ``local@domain.tld`` or anything starting with ``lnurl``
    (case-insensitive). It does not guarantee that the address resolves.
    """
    if not value:
        return False
    value = value.strip()
    return bool(_ADDRESS_PATTERN.match(value)) or value.lower().startswith("lnurl")


class PayRequestMetadata(BaseModel):
    """Discovery response (LUD-06 pay request)."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    callback: str = Field(min_length=1)
    min_sendable: int | None = Field(default=None, alias="minSendable")
    max_sendable: int | None = Field(default=None, alias="maxSendable")
    status: str | None = None
    reason: str | None = None

    @field_validator("callback")
    @classmethod
    def _callback_is_http_url(cls, value: str) -> str:
        try:
            url = httpx.URL(value)
        except httpx.InvalidURL as e:
            raise ValueError(f"invalid callback URL: {e}") from e
        if url.scheme not in ("http", "https") or not url.host:
            raise ValueError("callback must be an absolute http(s) URL")
        return value


class PayRequestInvoice(BaseModel):
    """Callback response carrying the invoice or an error."""

    model_config = ConfigDict(extra="ignore")

    pr: str | None = None
    status: str | None = None
    reason: str | None = None


class LightningAddressResolver:
    """Resolves Lightning addresses over HTTP."""

    def __init__(self, client: httpx.AsyncClient | None = None, timeout_seconds: float = 10.0):
        """Initialize the resolver.

        Args:
            client: Shared HTTP client. One is created (and owned) if omitted.
            timeout_seconds: Per-request timeout for an owned client
        """
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds, connect=5.0),
            headers={"User-Agent": "shiftmarket/0.1"},
            follow_redirects=True,
        )

    async def __aenter__(self) -> "LightningAddressResolver":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client if this resolver created it."""
        if self._owns_client:
            await self.client.aclose()

    async def resolve(self, address: str, amount_sats: int) -> str:
        """Resolve an address to an invoice for `amount_sats`.

        Raises:
            MalformedAddressError: If the address is not ``name@domain``
            ValidationError: If the amount is not a positive integer
            AddressDiscoveryError: If the discovery request fails
            InvoiceRequestError: If the callback request fails or returns no invoice
            RemoteLightningError: If the service answers with an error status
        """
        lightning_address = LightningAddress.parse(address)
        if isinstance(amount_sats, bool) or not isinstance(amount_sats, int) or amount_sats <= 0:
            raise ValidationError(
                "Amount must be a positive number of sats",
                field="amount_sats",
                value=amount_sats,
                constraint=">0",
            )

        metadata = await self._discover(lightning_address)
        amount_msat = amount_sats * MSAT_PER_SAT

        if metadata.min_sendable is not None and amount_msat < metadata.min_sendable:
            raise InvoiceRequestError(
                f"Amount below minimum accepted by {lightning_address}",
                service=lightning_address.domain,
                context={"amount_msat": amount_msat, "min_sendable": metadata.min_sendable},
            )
        if metadata.max_sendable is not None and amount_msat > metadata.max_sendable:
            raise InvoiceRequestError(
                f"Amount above maximum accepted by {lightning_address}",
                service=lightning_address.domain,
                context={"amount_msat": amount_msat, "max_sendable": metadata.max_sendable},
            )

        invoice = await self._request_invoice(lightning_address, metadata.callback, amount_msat)
        logger.info(
            "lightning_address_resolved",
            address=str(lightning_address),
            amount_sats=amount_sats,
        )
        return invoice

    async def _discover(self, address: LightningAddress) -> PayRequestMetadata:
        url = address.discovery_url
        try:
            response = await self.client.get(url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise AddressDiscoveryError(
                "Failed to fetch Lightning address data",
                service=address.domain,
                original_error=e,
            ) from e

        if not response.is_success:
            raise AddressDiscoveryError(
                "Failed to fetch Lightning address data",
                service=address.domain,
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise AddressDiscoveryError(
                "Lightning address returned invalid JSON",
                service=address.domain,
                status_code=response.status_code,
                original_error=e,
            ) from e

        if isinstance(payload, dict) and str(payload.get("status", "")).upper() == "ERROR":
            reason = str(payload.get("reason") or "Lightning address returned error")
            raise RemoteLightningError(reason, service=address.domain, remote_message=reason)

        try:
            return PayRequestMetadata.model_validate(payload)
        except SchemaError as e:
            raise AddressDiscoveryError(
                "Lightning address response has no usable callback",
                service=address.domain,
                original_error=e,
            ) from e

    async def _request_invoice(
        self, address: LightningAddress, callback: str, amount_msat: int
    ) -> str:
        try:
            response = await self.client.get(callback, params={"amount": amount_msat})
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise InvoiceRequestError(
                "Failed to get invoice from Lightning address",
                service=address.domain,
                original_error=e,
            ) from e

        if not response.is_success:
            raise InvoiceRequestError(
                "Failed to get invoice from Lightning address",
                service=address.domain,
                status_code=response.status_code,
            )

        try:
            result = PayRequestInvoice.model_validate(response.json())
        except (ValueError, SchemaError) as e:
            raise InvoiceRequestError(
                "Lightning address callback returned an invalid response",
                service=address.domain,
                original_error=e,
            ) from e

        if (result.status or "").upper() == "ERROR":
            reason = result.reason or "Lightning address returned error"
            raise RemoteLightningError(reason, service=address.domain, remote_message=reason)

        if not result.pr:
            raise InvoiceRequestError(
                "Lightning address callback returned no invoice",
                service=address.domain,
            )
        return result.pr


async def resolve_lightning_address(
    address: str, amount_sats: int, *, client: httpx.AsyncClient | None = None
) -> str:
    """One-off resolution with a short-lived resolver."""
    async with LightningAddressResolver(client=client) as resolver:
        return await resolver.resolve(address, amount_sats)
