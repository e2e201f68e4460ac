"""Domain value objects for escrow payments.

Value Objects in DDD:
- Immutable (frozen dataclasses)
- No identity (equality based on attributes)
- Describe characteristics, not entities

All sats amounts are non-negative integers. Fee math always truncates.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from shiftmarket.exceptions import MalformedAddressError, ValidationError

from .enums import PaymentStatus

SATS_PER_BTC = 100_000_000
MSAT_PER_SAT = 1000
DEFAULT_PLATFORM_FEE_PERCENT = 2
DEFAULT_BTC_PRICE_GBP = Decimal("50000")


def _require_sats(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer amount of sats", field=name, value=value)
    if value < 0:
        raise ValidationError(
            f"{name} must be non-negative", field=name, value=value, constraint=">=0"
        )
    return value


def calculate_platform_fee(
    item_price: int, fee_percent: int = DEFAULT_PLATFORM_FEE_PERCENT
) -> int:
    """Platform fee in sats: floor(item_price * fee_percent / 100).

    Example:
        >>> calculate_platform_fee(999)
        19
    """
    _require_sats("item_price", item_price)
    return item_price * fee_percent // 100


def calculate_total_amount(
    item_price: int, fee_percent: int = DEFAULT_PLATFORM_FEE_PERCENT
) -> int:
    """Amount the buyer pays: item price plus the truncated platform fee."""
    return item_price + calculate_platform_fee(item_price, fee_percent)


def convert_gbp_to_sats(
    gbp: Decimal | float | str, btc_price_gbp: Decimal = DEFAULT_BTC_PRICE_GBP
) -> int:
    """Convert a GBP amount to sats, rounded to the nearest sat."""
    price = Decimal(str(btc_price_gbp))
    if price <= 0:
        raise ValidationError("BTC price must be positive", field="btc_price_gbp", value=price)
    sats = Decimal(str(gbp)) / price * SATS_PER_BTC
    return int(sats.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def convert_sats_to_gbp(sats: int, btc_price_gbp: Decimal = DEFAULT_BTC_PRICE_GBP) -> Decimal:
    """Convert sats to GBP, rounded to pence."""
    btc = Decimal(sats) / SATS_PER_BTC
    return (btc * Decimal(str(btc_price_gbp))).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PaymentRequest:
    """Buyer's request to pay for one listing.

    Use ``PaymentRequest.for_item`` to have the fee and total computed.
    """

    listing_id: str
    seller_pubkey: str
    buyer_pubkey: str
    item_price: int
    platform_fee: int
    total_amount: int
    description: str | None = None

    def __post_init__(self) -> None:
        """Validate amounts and references."""
        if not self.listing_id:
            raise ValidationError("listing_id is required", field="listing_id")
        _require_sats("item_price", self.item_price)
        _require_sats("platform_fee", self.platform_fee)
        _require_sats("total_amount", self.total_amount)

        if self.total_amount <= 0:
            raise ValidationError(
                "Total amount must be positive",
                field="total_amount",
                value=self.total_amount,
                constraint=">0",
            )
        if self.total_amount != self.item_price + self.platform_fee:
            raise ValidationError(
                "Total amount must equal item price plus platform fee",
                field="total_amount",
                value=self.total_amount,
                constraint="total_amount == item_price + platform_fee",
            )

    @classmethod
    def for_item(
        cls,
        listing_id: str,
        item_price: int,
        seller_pubkey: str,
        buyer_pubkey: str,
        fee_percent: int = DEFAULT_PLATFORM_FEE_PERCENT,
        description: str | None = None,
    ) -> "PaymentRequest":
        """Build a request with fee and total computed from the item price."""
        fee = calculate_platform_fee(item_price, fee_percent)
        return cls(
            listing_id=listing_id,
            seller_pubkey=seller_pubkey,
            buyer_pubkey=buyer_pubkey,
            item_price=item_price,
            platform_fee=fee,
            total_amount=item_price + fee,
            description=description,
        )


@dataclass(frozen=True)
class LightningAddress:
    """A ``name@domain`` Lightning address."""

    name: str
    domain: str

    @classmethod
    def parse(cls, address: str) -> "LightningAddress":
        """Split an address on ``@``.

        Raises:
            MalformedAddressError: If it does not have exactly one ``@`` with
                non-empty parts on both sides
        """
        parts = (address or "").strip().split("@")
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise MalformedAddressError(
                "Invalid Lightning address format",
                field="lightning_address",
                value=address,
                constraint="name@domain",
            )
        return cls(name=parts[0], domain=parts[1].lower())

    @property
    def discovery_url(self) -> str:
        """Well-known LNURL-pay discovery endpoint."""
        return f"https://{self.domain}/.well-known/lnurlp/{self.name}"

    def __str__(self) -> str:
        return f"{self.name}@{self.domain}"


# =============================================================================
# Wallet collaborator results
# =============================================================================


@dataclass(frozen=True)
class CreatedInvoice:
    """Invoice returned by the invoicing collaborator."""

    invoice: str
    payment_hash: str


@dataclass(frozen=True)
class InvoiceLookup:
    """Invoice state reported by the invoicing collaborator."""

    settled: bool
    settled_at: datetime | None = None
    expired: bool = False


@dataclass(frozen=True)
class SendPaymentResult:
    """Result of the payment-send collaborator. At least one reference is set."""

    preimage: str | None = None
    tx_id: str | None = None

    @property
    def reference(self) -> str:
        """Payout reference: explicit transaction id, else the preimage."""
        return self.tx_id or self.preimage or ""


# =============================================================================
# Results exposed to callers
# =============================================================================


@dataclass(frozen=True)
class PaymentStatusReport:
    """Result of a single status check."""

    payment_hash: str
    status: PaymentStatus
    settled: bool
    settled_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "payment_hash": self.payment_hash,
            "status": self.status.value,
            "settled": self.settled,
            "settled_at": self.settled_at.isoformat() if self.settled_at else None,
        }


@dataclass(frozen=True)
class PayoutReceipt:
    """Result of a successful seller payout."""

    payment_hash: str
    tx_id: str
    amount_sats: int
    lightning_address: str
    settled_at: datetime
