"""Escrow payment lifecycle service.

Owns the Payment state machine: buyer invoice creation, single-shot status
checks, and seller payout. Polling is driven by the caller at
``RECOMMENDED_POLL_INTERVAL_SECONDS``; nothing here schedules work or retries.

Every mutation of a Payment happens under a per-payment-hash lock, so a
payout can never interleave with a status transition of the same Payment.
"""

import asyncio
from collections import Counter
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from shiftmarket.core.events.base import BaseEvent, EventBus, get_global_event_bus
from shiftmarket.exceptions import (
    DuplicatePaymentError,
    InvalidAddressError,
    InvoiceCreationError,
    PaymentAlreadySettledError,
    PaymentNotFoundError,
    PaymentNotReadyError,
    PayoutFailedError,
    ShiftMarketError,
    ValidationError,
)
from shiftmarket.lightning.domain.enums import PaymentStatus
from shiftmarket.lightning.domain.events import (
    PaymentCreated,
    PaymentExpired,
    PaymentFailed,
    PaymentPaid,
    PaymentSettled,
    PayoutFailed,
)
from shiftmarket.lightning.domain.models import Payment
from shiftmarket.lightning.domain.value_objects import (
    DEFAULT_PLATFORM_FEE_PERCENT,
    PaymentRequest,
    PaymentStatusReport,
    PayoutReceipt,
    SendPaymentResult,
    calculate_platform_fee,
)
from shiftmarket.lightning.infrastructure.lnurl_resolver import (
    LightningAddressResolver,
    is_valid_lightning_address,
)
from shiftmarket.lightning.infrastructure.repository import (
    InMemoryPaymentRepository,
    PaymentRepository,
)
from shiftmarket.lightning.infrastructure.wallet_client import (
    WalletClient,
    create_wallet_client,
)
from shiftmarket.utils.config import Settings, get_settings
from shiftmarket.utils.logging import get_logger

logger = get_logger(__name__)

RECOMMENDED_POLL_INTERVAL_SECONDS = 2.0


def _utcnow() -> datetime:
    return datetime.now(UTC)


class KeyedLocks:
    """One asyncio lock per key, dropped once no task holds or awaits it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: Counter[str] = Counter()

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


class PaymentLifecycleManager:
    """Service for creating, tracking and paying out escrow payments."""

    recommended_poll_interval = RECOMMENDED_POLL_INTERVAL_SECONDS

    def __init__(
        self,
        wallet: WalletClient,
        repository: PaymentRepository,
        resolver: LightningAddressResolver,
        event_bus: EventBus | None = None,
        fee_percent: int = DEFAULT_PLATFORM_FEE_PERCENT,
        invoice_expiry_seconds: int = 3600,
        payout_timeout_seconds: float = 30.0,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize the payment service.

        Args:
            wallet: Invoicing and payment-send collaborator
            repository: Payment store
            resolver: Lightning address resolver used for payouts
            event_bus: Bus for payment events (global bus if omitted)
            fee_percent: Platform fee in whole percent
            invoice_expiry_seconds: Age after which a pending invoice is expired
            payout_timeout_seconds: Bound on address resolution plus payment send
            clock: Returns the current UTC time
        """
        self.wallet = wallet
        self.repository = repository
        self.resolver = resolver
        self.event_bus = event_bus or get_global_event_bus()
        self.fee_percent = fee_percent
        self.invoice_expiry_seconds = invoice_expiry_seconds
        self.payout_timeout = payout_timeout_seconds
        self.clock = clock

        self._payment_locks = KeyedLocks()
        self._listing_locks = KeyedLocks()

    async def _publish(self, event: BaseEvent) -> None:
        await self.event_bus.publish_async(event)

    # =========================================================================
    # Invoice creation
    # =========================================================================

    async def create_invoice(self, request: PaymentRequest) -> Payment:
        """Create the buyer invoice and the pending Payment for a listing.

        Args:
            request: Listing, parties and amounts (see ``PaymentRequest.for_item``)

        Returns:
            The new Payment in ``pending`` state, identified by its payment hash

        Raises:
            ValidationError: If the fee does not match the platform fee policy
            DuplicatePaymentError: If the listing already has a live Payment
            InvoiceCreationError: If the wallet could not create the invoice
        """
        expected_fee = calculate_platform_fee(request.item_price, self.fee_percent)
        if request.platform_fee != expected_fee:
            raise ValidationError(
                "Platform fee does not match policy",
                field="platform_fee",
                value=request.platform_fee,
                constraint=f"floor(item_price * {self.fee_percent} / 100) == {expected_fee}",
            )

        async with self._listing_locks.hold(request.listing_id):
            existing = await self._live_payment(request.listing_id)
            if existing is not None:
                raise DuplicatePaymentError(
                    "Listing already has a live payment",
                    listing_id=request.listing_id,
                    existing_payment_hash=existing.payment_hash,
                )

            description = (
                request.description or f"Shift Marketplace - Listing {request.listing_id}"
            )
            metadata = {
                "listing_id": request.listing_id,
                "seller_pubkey": request.seller_pubkey,
                "buyer_pubkey": request.buyer_pubkey,
                "item_price": request.item_price,
                "platform_fee": request.platform_fee,
            }

            try:
                created = await self.wallet.create_invoice(
                    request.total_amount, description, metadata
                )
            except Exception as e:
                logger.error(
                    "payment_invoice_failed",
                    listing_id=request.listing_id,
                    amount=request.total_amount,
                    error=str(e),
                )
                raise InvoiceCreationError(
                    "Failed to create invoice",
                    service="wallet",
                    remote_message=str(e),
                    original_error=e,
                ) from e

            if not created.invoice or not created.payment_hash:
                raise InvoiceCreationError(
                    "Wallet returned an incomplete invoice", service="wallet"
                )

            payment = Payment(
                payment_hash=created.payment_hash,
                listing_id=request.listing_id,
                invoice=created.invoice,
                item_price=request.item_price,
                platform_fee=request.platform_fee,
                total_amount=request.total_amount,
                seller_pubkey=request.seller_pubkey,
                buyer_pubkey=request.buyer_pubkey,
                created_at=self.clock(),
            )
            self.repository.put(payment)

        logger.info(
            "payment_invoice_created",
            payment_hash=payment.payment_hash[:16],
            listing_id=payment.listing_id,
            total_amount=payment.total_amount,
            platform_fee=payment.platform_fee,
        )
        await self._publish(
            PaymentCreated(
                payment_hash=payment.payment_hash,
                listing_id=payment.listing_id,
                total_amount=payment.total_amount,
                platform_fee=payment.platform_fee,
            )
        )
        return payment

    async def _live_payment(self, listing_id: str) -> Payment | None:
        """The listing's live Payment, settling or expiring overdue pending ones first.

        An overdue Payment is only expired once the wallet confirms its invoice
        is unpaid. If the wallet cannot be reached it stays pending, and live.
        """
        for payment in self.repository.list(lambda p: p.listing_id == listing_id):
            if payment.is_expired_at(self.clock(), self.invoice_expiry_seconds):
                async with self._payment_locks.hold(payment.payment_hash):
                    await self._settle_or_expire(payment)
            if payment.status.is_live:
                return payment
        return None

    async def _settle_or_expire(self, payment: Payment) -> None:
        if payment.status != PaymentStatus.PENDING:
            return
        try:
            lookup = await self.wallet.lookup_invoice(payment.payment_hash)
        except Exception as e:
            logger.warning(
                "payment_status_unavailable",
                payment_hash=payment.payment_hash[:16],
                error=str(e),
            )
            return

        if lookup.settled:
            await self._mark_paid(payment, self.clock())
        else:
            await self._expire(payment)

    # =========================================================================
    # Status checks
    # =========================================================================

    async def check_status(self, payment_hash: str) -> PaymentStatusReport:
        """Check the buyer invoice once.

        `settled` and `settled_at` describe the buyer invoice. A wallet error
        yields a ``pending`` report and never changes state.
        """
        async with self._payment_locks.hold(payment_hash):
            payment = self.repository.get(payment_hash)

            if payment is not None and payment.status != PaymentStatus.PENDING:
                return self._report(payment)

            try:
                lookup = await self.wallet.lookup_invoice(payment_hash)
            except Exception as e:
                logger.warning(
                    "payment_status_unavailable", payment_hash=payment_hash[:16], error=str(e)
                )
                return PaymentStatusReport(
                    payment_hash=payment_hash, status=PaymentStatus.PENDING, settled=False
                )

            now = self.clock()

            if lookup.settled:
                if payment is None:
                    return PaymentStatusReport(
                        payment_hash=payment_hash,
                        status=PaymentStatus.PAID,
                        settled=True,
                        settled_at=lookup.settled_at,
                    )
                await self._mark_paid(payment, now)
                return PaymentStatusReport(
                    payment_hash=payment_hash,
                    status=payment.status,
                    settled=True,
                    settled_at=lookup.settled_at or payment.paid_at,
                )

            if payment is None:
                status = PaymentStatus.EXPIRED if lookup.expired else PaymentStatus.PENDING
                return PaymentStatusReport(payment_hash=payment_hash, status=status, settled=False)

            if lookup.expired or payment.is_expired_at(now, self.invoice_expiry_seconds):
                await self._expire(payment)

            return self._report(payment)

    async def confirm_paid(self, payment_hash: str) -> Payment:
        """Record buyer payment reported out-of-band (e.g. by a wallet webhook).

        Raises:
            PaymentNotFoundError: If no Payment exists for the hash
        """
        async with self._payment_locks.hold(payment_hash):
            payment = self.repository.get(payment_hash)
            if payment is None:
                raise PaymentNotFoundError("Payment not found", payment_hash=payment_hash)

            if payment.status == PaymentStatus.PENDING:
                await self._mark_paid(payment, self.clock())
            else:
                logger.debug(
                    "payment_confirmation_ignored",
                    payment_hash=payment_hash[:16],
                    status=payment.status.value,
                )
            return payment

    async def mark_failed(self, payment_hash: str, reason: str | None = None) -> Payment:
        """Abandon a pending Payment so the listing can be paid for again.

        Raises:
            PaymentNotFoundError: If no Payment exists for the hash
            BusinessLogicError: If the Payment is no longer pending
        """
        async with self._payment_locks.hold(payment_hash):
            payment = self.repository.get(payment_hash)
            if payment is None:
                raise PaymentNotFoundError("Payment not found", payment_hash=payment_hash)

            payment.mark_failed(reason)
            self.repository.put(payment)

        logger.info("payment_failed", payment_hash=payment_hash[:16], reason=reason)
        await self._publish(
            PaymentFailed(payment_hash=payment_hash, listing_id=payment.listing_id, reason=reason)
        )
        return payment

    async def _mark_paid(self, payment: Payment, now: datetime) -> None:
        if not payment.mark_paid(now):
            return
        self.repository.put(payment)
        logger.info(
            "payment_paid", payment_hash=payment.payment_hash[:16], listing_id=payment.listing_id
        )
        await self._publish(
            PaymentPaid(
                payment_hash=payment.payment_hash,
                listing_id=payment.listing_id,
                paid_at=payment.paid_at or now,
            )
        )

    async def _expire(self, payment: Payment) -> None:
        payment.mark_expired()
        self.repository.put(payment)
        logger.info(
            "payment_expired", payment_hash=payment.payment_hash[:16], listing_id=payment.listing_id
        )
        await self._publish(
            PaymentExpired(
                payment_hash=payment.payment_hash,
                listing_id=payment.listing_id,
                created_at=payment.created_at,
            )
        )

    @staticmethod
    def _report(payment: Payment) -> PaymentStatusReport:
        paid = payment.status in (PaymentStatus.PAID, PaymentStatus.SETTLED)
        return PaymentStatusReport(
            payment_hash=payment.payment_hash,
            status=payment.status,
            settled=paid,
            settled_at=payment.paid_at if paid else None,
        )

    # =========================================================================
    # Seller payout
    # =========================================================================

    async def payout(self, payment_hash: str, seller_lightning_address: str) -> PayoutReceipt:
        """Pay the seller the item price. The platform fee is retained.

        Raises:
            PaymentNotFoundError: If no Payment exists for the hash
            PaymentAlreadySettledError: If the seller was already paid
            PaymentNotReadyError: If the buyer has not paid yet
            InvalidAddressError: If the address fails the syntactic check
            AddressDiscoveryError, InvoiceRequestError, RemoteLightningError:
                If the address could not be resolved
            PayoutFailedError: If sending failed or timed out

        On any failure after validation the Payment stays ``paid`` and can be retried.
        """
        async with self._payment_locks.hold(payment_hash):
            payment = self.repository.get(payment_hash)
            if payment is None:
                raise PaymentNotFoundError("Payment not found", payment_hash=payment_hash)
            if payment.status == PaymentStatus.SETTLED:
                raise PaymentAlreadySettledError(
                    "Payout already sent",
                    payment_hash=payment_hash,
                    current_status=payment.status.value,
                )
            if payment.status != PaymentStatus.PAID:
                raise PaymentNotReadyError(
                    "Payment must be paid before payout",
                    payment_hash=payment_hash,
                    current_status=payment.status.value,
                )
            if not is_valid_lightning_address(seller_lightning_address):
                raise InvalidAddressError(
                    "Invalid Lightning address",
                    field="seller_lightning_address",
                    value=seller_lightning_address,
                )

            address = seller_lightning_address.strip()
            amount = payment.item_price

            try:
                async with asyncio.timeout(self.payout_timeout):
                    invoice = await self.resolver.resolve(address, amount)
                    result = await self._send(payment_hash, invoice)
            except TimeoutError as e:
                await self._payout_failed(payment, address, "timeout")
                raise PayoutFailedError(
                    "Payout timed out",
                    service="wallet",
                    context={"timeout_seconds": self.payout_timeout},
                    original_error=e,
                ) from e
            except ShiftMarketError as e:
                await self._payout_failed(payment, address, e.message)
                raise

            now = self.clock()
            payment.mark_settled(now, result.reference, address)
            self.repository.put(payment)

        logger.info(
            "payout_sent",
            payment_hash=payment_hash[:16],
            listing_id=payment.listing_id,
            amount_sats=amount,
        )
        await self._publish(
            PaymentSettled(
                payment_hash=payment_hash,
                listing_id=payment.listing_id,
                amount_sats=amount,
                payout_tx_id=result.reference,
                lightning_address=address,
                settled_at=now,
            )
        )
        return PayoutReceipt(
            payment_hash=payment_hash,
            tx_id=result.reference,
            amount_sats=amount,
            lightning_address=address,
            settled_at=now,
        )

    async def _send(self, payment_hash: str, invoice: str) -> SendPaymentResult:
        try:
            result = await self.wallet.send_payment(invoice)
        except Exception as e:
            raise PayoutFailedError(
                "Failed to send payout",
                service="wallet",
                remote_message=str(e),
                original_error=e,
            ) from e

        if not result.reference:
            raise PayoutFailedError(
                "Wallet returned no payment reference",
                service="wallet",
                context={"payment_hash": payment_hash},
            )
        return result

    async def _payout_failed(self, payment: Payment, address: str, reason: str) -> None:
        logger.warning(
            "payout_failed",
            payment_hash=payment.payment_hash[:16],
            address=address,
            reason=reason,
        )
        await self._publish(
            PayoutFailed(
                payment_hash=payment.payment_hash, lightning_address=address, reason=reason
            )
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def get_payment(self, payment_hash: str) -> Payment | None:
        """Get a payment by hash."""
        return self.repository.get(payment_hash)

    def payment_history(self, pubkey: str) -> list[Payment]:
        """Payments where `pubkey` is buyer or seller, newest first."""
        payments = self.repository.list(
            lambda p: pubkey in (p.buyer_pubkey, p.seller_pubkey)
        )
        return sorted(payments, key=lambda p: p.created_at, reverse=True)

    def payment_for_listing(self, listing_id: str) -> Payment | None:
        """The listing's live Payment, else its most recent one."""
        payments = sorted(
            self.repository.list(lambda p: p.listing_id == listing_id),
            key=lambda p: p.created_at,
            reverse=True,
        )
        live = next((p for p in payments if p.status.is_live), None)
        return live or next(iter(payments), None)


def create_payment_service(
    settings: Settings | None = None,
    wallet: WalletClient | None = None,
    repository: PaymentRepository | None = None,
    resolver: LightningAddressResolver | None = None,
) -> PaymentLifecycleManager:
    """Factory function to create the payment service from settings."""
    settings = settings or get_settings()
    if repository is None:
        repository = InMemoryPaymentRepository()
    if resolver is None:
        resolver = LightningAddressResolver(timeout_seconds=settings.http_timeout_seconds)

    return PaymentLifecycleManager(
        wallet=wallet if wallet is not None else create_wallet_client(settings),
        repository=repository,
        resolver=resolver,
        fee_percent=settings.platform_fee_percent,
        invoice_expiry_seconds=settings.invoice_expiry_seconds,
        payout_timeout_seconds=settings.payout_timeout_seconds,
    )
