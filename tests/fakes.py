"""In-memory fakes for the relay query client, the wallet and Lightning address hosts."""

import hashlib
import itertools
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

from shiftmarket.exceptions import WalletError
from shiftmarket.lightning.domain.value_objects import (
    CreatedInvoice,
    InvoiceLookup,
    SendPaymentResult,
)
from shiftmarket.marketplace.infrastructure.event_codec import build_listing_event

SELLER_PUBKEY = "a" * 64
BUYER_PUBKEY = "b" * 64
REVIEWER_PUBKEY = "c" * 64

_event_ids = itertools.count(1)


def make_listing_event(
    listing_id: str = "bike-001",
    title: str = "Road bike",
    price: str = "250",
    currency: str = "GBP",
    location: str = "Manchester, UK",
    published_at: int = 1_700_000_000,
    pubkey: str = SELLER_PUBKEY,
    **kwargs: Any,
) -> dict[str, Any]:
    """A signed-looking listing event in the layout relays return."""
    event = build_listing_event(
        listing_id=listing_id,
        title=title,
        description=kwargs.pop("description", f"{title} in good condition"),
        price=price,
        currency=currency,
        location=location,
        published_at=published_at,
        created_at=kwargs.pop("created_at", published_at),
        **kwargs,
    )
    event["id"] = f"{next(_event_ids):064x}"
    event["pubkey"] = pubkey
    return event


def make_review_event(
    rating: Any,
    seller_pubkey: str = SELLER_PUBKEY,
    content: str = "",
    created_at: int = 1_700_000_000,
    listing_id: str | None = None,
) -> dict[str, Any]:
    tags = [["p", seller_pubkey], ["rating", str(rating)]]
    if listing_id:
        tags.append(["e", listing_id])
    return {
        "id": f"{next(_event_ids):064x}",
        "pubkey": REVIEWER_PUBKEY,
        "created_at": created_at,
        "kind": 1985,
        "content": content,
        "tags": tags,
    }


class FakeEventQueryClient:
    """Relay query collaborator returning canned events."""

    def __init__(
        self, events: list[dict[str, Any]] | None = None, error: Exception | None = None
    ):
        self.events = list(events or [])
        self.error = error
        self.calls: list[tuple[list[dict[str, Any]], float]] = []

    async def query(
        self, filters: list[dict[str, Any]], *, timeout: float
    ) -> list[dict[str, Any]]:
        self.calls.append((filters, timeout))
        if self.error is not None:
            raise self.error
        return list(self.events)


class FakeWallet:
    """Wallet collaborator keeping invoices in memory."""

    def __init__(self) -> None:
        self.invoices: dict[str, dict[str, Any]] = {}
        self.create_calls = 0
        self.lookup_calls = 0
        self.sent: list[str] = []
        self.fail_create = False
        self.fail_lookup = False
        self.fail_send = False
        self._counter = itertools.count(1)

    async def create_invoice(
        self, amount_sats: int, description: str, metadata: dict[str, Any]
    ) -> CreatedInvoice:
        self.create_calls += 1
        if self.fail_create:
            raise WalletError("wallet unavailable", service="wallet", status_code=503)

        payment_hash = hashlib.sha256(str(next(self._counter)).encode()).hexdigest()
        self.invoices[payment_hash] = {
            "amount": amount_sats,
            "description": description,
            "metadata": metadata,
            "settled": False,
            "settled_at": None,
            "expired": False,
        }
        return CreatedInvoice(
            invoice=f"lnbc{amount_sats}n1fake{payment_hash[:10]}", payment_hash=payment_hash
        )

    async def lookup_invoice(self, payment_hash: str) -> InvoiceLookup:
        self.lookup_calls += 1
        if self.fail_lookup:
            raise WalletError("wallet unavailable", service="wallet", status_code=503)
        invoice = self.invoices.get(payment_hash)
        if invoice is None:
            return InvoiceLookup(settled=False)
        return InvoiceLookup(
            settled=invoice["settled"],
            settled_at=invoice["settled_at"],
            expired=invoice["expired"],
        )

    async def send_payment(self, invoice: str) -> SendPaymentResult:
        self.sent.append(invoice)
        if self.fail_send:
            raise WalletError("no route", service="wallet")
        return SendPaymentResult(preimage=hashlib.sha256(invoice.encode()).hexdigest())

    def settle(self, payment_hash: str, at: datetime | None = None) -> None:
        """Simulate the buyer paying the invoice."""
        self.invoices[payment_hash]["settled"] = True
        self.invoices[payment_hash]["settled_at"] = at or datetime.now(UTC)


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class LnurlServer:
    """httpx.MockTransport handler emulating a Lightning address host."""

    def __init__(self, invoice: str = "lnbc10000n1payout") -> None:
        self.invoice = invoice
        self.requests: list[httpx.Request] = []
        self.discovery_status = 200
        self.discovery_body: Any = None
        self.callback_status = 200
        self.callback_body: Any = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.url.path.startswith("/.well-known/lnurlp/"):
            name = request.url.path.rsplit("/", 1)[-1]
            body = self.discovery_body
            if body is None:
                body = {
                    "tag": "payRequest",
                    "callback": f"https://{request.url.host}/lnurlp/{name}/callback",
                    "minSendable": 1000,
                    "maxSendable": 100_000_000_000,
                    "metadata": "[]",
                }
            return httpx.Response(self.discovery_status, json=body)

        if request.url.path.endswith("/callback"):
            body = self.callback_body
            if body is None:
                body = {"pr": self.invoice, "routes": []}
            return httpx.Response(self.callback_status, json=body)

        return httpx.Response(404, json={"status": "ERROR", "reason": "not found"})
