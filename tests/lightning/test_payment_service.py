"""Tests for the escrow payment lifecycle."""

import asyncio

import pytest

from shiftmarket.core.events.base import BaseEvent
from shiftmarket.exceptions import (
    AddressDiscoveryError,
    BusinessLogicError,
    DuplicatePaymentError,
    InvalidAddressError,
    InvoiceCreationError,
    PaymentAlreadySettledError,
    PaymentNotFoundError,
    PaymentNotReadyError,
    PayoutFailedError,
    ValidationError,
)
from shiftmarket.lightning.application.services.payment_service import (
    PaymentLifecycleManager,
    create_payment_service,
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
from shiftmarket.lightning.domain.value_objects import PaymentRequest
from shiftmarket.utils.config import Settings
from tests.fakes import BUYER_PUBKEY, SELLER_PUBKEY, REVIEWER_PUBKEY

SELLER_ADDRESS = "seller@getalby.com"


def _request(listing_id="bike-001", item_price=10_000, buyer=BUYER_PUBKEY):
    return PaymentRequest.for_item(listing_id, item_price, SELLER_PUBKEY, buyer)


@pytest.fixture
def published(event_bus):
    events = []
    event_bus.subscribe(BaseEvent, events.append)
    return events


class TestCreateInvoice:
    @pytest.mark.asyncio
    async def test_creates_pending_payment(self, payment_manager, fake_wallet, clock):
        payment = await payment_manager.create_invoice(_request())

        assert payment.status == PaymentStatus.PENDING
        assert payment.total_amount == 10_200
        assert payment.platform_fee == 200
        assert payment.created_at == clock.now
        assert payment_manager.get_payment(payment.payment_hash) is payment

        invoice = fake_wallet.invoices[payment.payment_hash]
        assert invoice["amount"] == 10_200
        assert invoice["description"] == "Shift Marketplace - Listing bike-001"
        assert invoice["metadata"]["listing_id"] == "bike-001"

    @pytest.mark.asyncio
    async def test_publishes_created_event(self, payment_manager, published):
        payment = await payment_manager.create_invoice(_request())

        (event,) = published
        assert isinstance(event, PaymentCreated)
        assert event.payment_hash == payment.payment_hash
        assert event.total_amount == 10_200

    @pytest.mark.asyncio
    async def test_rejects_fee_not_matching_policy(self, payment_manager, fake_wallet):
        request = PaymentRequest("bike-001", SELLER_PUBKEY, BUYER_PUBKEY, 10_000, 100, 10_100)

        with pytest.raises(ValidationError):
            await payment_manager.create_invoice(request)
        assert fake_wallet.create_calls == 0

    @pytest.mark.asyncio
    async def test_wallet_failure_stores_nothing(
        self, payment_manager, fake_wallet, payment_repository
    ):
        fake_wallet.fail_create = True

        with pytest.raises(InvoiceCreationError):
            await payment_manager.create_invoice(_request())
        assert len(payment_repository) == 0

    @pytest.mark.asyncio
    async def test_duplicate_live_payment_rejected(self, payment_manager, fake_wallet):
        first = await payment_manager.create_invoice(_request())

        with pytest.raises(DuplicatePaymentError) as exc_info:
            await payment_manager.create_invoice(_request(buyer=REVIEWER_PUBKEY))
        assert exc_info.value.context["existing_payment_hash"] == first.payment_hash
        assert fake_wallet.create_calls == 1

    @pytest.mark.asyncio
    async def test_concurrent_requests_create_one_payment(self, payment_manager, fake_wallet):
        results = await asyncio.gather(
            payment_manager.create_invoice(_request()),
            payment_manager.create_invoice(_request(buyer=REVIEWER_PUBKEY)),
            return_exceptions=True,
        )

        assert sum(isinstance(r, DuplicatePaymentError) for r in results) == 1
        assert fake_wallet.create_calls == 1

    @pytest.mark.asyncio
    async def test_new_payment_allowed_after_failure(self, payment_manager):
        first = await payment_manager.create_invoice(_request())
        await payment_manager.mark_failed(first.payment_hash, "buyer cancelled")

        second = await payment_manager.create_invoice(_request())

        assert second.payment_hash != first.payment_hash

    @pytest.mark.asyncio
    async def test_overdue_pending_payment_expires_on_new_request(
        self, payment_manager, clock, published
    ):
        first = await payment_manager.create_invoice(_request())
        clock.advance(3600)

        second = await payment_manager.create_invoice(_request())

        assert first.status == PaymentStatus.EXPIRED
        assert second.status == PaymentStatus.PENDING
        assert [type(e) for e in published] == [PaymentCreated, PaymentExpired, PaymentCreated]

    @pytest.mark.asyncio
    async def test_overdue_payment_paid_before_expiry_is_kept(
        self, payment_manager, fake_wallet, clock, published
    ):
        first = await payment_manager.create_invoice(_request())
        fake_wallet.settle(first.payment_hash, at=clock.now)
        clock.advance(3600)

        with pytest.raises(DuplicatePaymentError) as exc_info:
            await payment_manager.create_invoice(_request(buyer=REVIEWER_PUBKEY))

        assert exc_info.value.context["existing_payment_hash"] == first.payment_hash
        assert first.status == PaymentStatus.PAID
        assert fake_wallet.create_calls == 1
        assert not any(isinstance(e, PaymentExpired) for e in published)

        report = await payment_manager.check_status(first.payment_hash)
        assert report.status == PaymentStatus.PAID
        assert report.settled is True

    @pytest.mark.asyncio
    async def test_overdue_payment_stays_live_when_wallet_unreachable(
        self, payment_manager, fake_wallet, clock
    ):
        first = await payment_manager.create_invoice(_request())
        clock.advance(3600)
        fake_wallet.fail_lookup = True

        with pytest.raises(DuplicatePaymentError):
            await payment_manager.create_invoice(_request(buyer=REVIEWER_PUBKEY))

        assert first.status == PaymentStatus.PENDING
        assert fake_wallet.create_calls == 1


class TestCheckStatus:
    @pytest.mark.asyncio
    async def test_pending(self, payment_manager):
        payment = await payment_manager.create_invoice(_request())

        report = await payment_manager.check_status(payment.payment_hash)

        assert report.status == PaymentStatus.PENDING
        assert report.settled is False
        assert report.settled_at is None

    @pytest.mark.asyncio
    async def test_settled_invoice_marks_paid_once(
        self, payment_manager, fake_wallet, clock, published
    ):
        payment = await payment_manager.create_invoice(_request())
        settled_at = clock.now
        fake_wallet.settle(payment.payment_hash, at=settled_at)

        first = await payment_manager.check_status(payment.payment_hash)
        clock.advance(60)
        second = await payment_manager.check_status(payment.payment_hash)

        assert first.status == second.status == PaymentStatus.PAID
        assert first.settled is second.settled is True
        assert first.settled_at == second.settled_at == settled_at
        assert payment.paid_at == settled_at
        assert sum(isinstance(e, PaymentPaid) for e in published) == 1
        # Non-pending payments are answered locally
        assert fake_wallet.lookup_calls == 1

    @pytest.mark.asyncio
    async def test_wallet_error_reports_pending(self, payment_manager, fake_wallet):
        payment = await payment_manager.create_invoice(_request())
        fake_wallet.settle(payment.payment_hash)
        fake_wallet.fail_lookup = True

        report = await payment_manager.check_status(payment.payment_hash)

        assert report.status == PaymentStatus.PENDING
        assert report.settled is False
        assert payment.status == PaymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_expires_after_window(self, payment_manager, clock, published):
        payment = await payment_manager.create_invoice(_request())
        clock.advance(3601)

        report = await payment_manager.check_status(payment.payment_hash)

        assert report.status == PaymentStatus.EXPIRED
        assert payment.status == PaymentStatus.EXPIRED
        assert isinstance(published[-1], PaymentExpired)

    @pytest.mark.asyncio
    async def test_wallet_reported_expiry(self, payment_manager, fake_wallet):
        payment = await payment_manager.create_invoice(_request())
        fake_wallet.invoices[payment.payment_hash]["expired"] = True

        report = await payment_manager.check_status(payment.payment_hash)

        assert report.status == PaymentStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_unknown_hash_reports_wallet_state(self, payment_manager):
        report = await payment_manager.check_status("0" * 64)

        assert report.status == PaymentStatus.PENDING
        assert report.settled is False

    @pytest.mark.asyncio
    async def test_locks_are_released_after_use(self, payment_manager, fake_wallet):
        for i in range(100):
            await payment_manager.check_status(f"{i:064x}")
            with pytest.raises(PaymentNotFoundError):
                await payment_manager.confirm_paid(f"{i:064x}")

        payment = await payment_manager.create_invoice(_request())
        fake_wallet.settle(payment.payment_hash)
        await payment_manager.check_status(payment.payment_hash)
        await payment_manager.payout(payment.payment_hash, SELLER_ADDRESS)

        assert len(payment_manager._payment_locks) == 0
        assert len(payment_manager._listing_locks) == 0


class TestConfirmAndFail:
    @pytest.mark.asyncio
    async def test_confirm_paid(self, payment_manager, clock):
        payment = await payment_manager.create_invoice(_request())

        await payment_manager.confirm_paid(payment.payment_hash)
        await payment_manager.confirm_paid(payment.payment_hash)

        assert payment.status == PaymentStatus.PAID
        assert payment.paid_at == clock.now

    @pytest.mark.asyncio
    async def test_confirm_unknown(self, payment_manager):
        with pytest.raises(PaymentNotFoundError):
            await payment_manager.confirm_paid("0" * 64)

    @pytest.mark.asyncio
    async def test_mark_failed(self, payment_manager, published):
        payment = await payment_manager.create_invoice(_request())

        await payment_manager.mark_failed(payment.payment_hash, "abandoned")

        assert payment.status == PaymentStatus.FAILED
        assert isinstance(published[-1], PaymentFailed)
        assert published[-1].reason == "abandoned"

    @pytest.mark.asyncio
    async def test_mark_failed_requires_pending(self, payment_manager):
        payment = await payment_manager.create_invoice(_request())
        await payment_manager.confirm_paid(payment.payment_hash)

        with pytest.raises(BusinessLogicError):
            await payment_manager.mark_failed(payment.payment_hash)


class TestPayout:
    @pytest.mark.asyncio
    async def test_full_flow(self, payment_manager, fake_wallet, lnurl_server, published):
        payment = await payment_manager.create_invoice(_request(item_price=10_000))
        assert payment.total_amount == 10_200

        fake_wallet.settle(payment.payment_hash)
        report = await payment_manager.check_status(payment.payment_hash)
        assert report.status == PaymentStatus.PAID
        paid_at = payment.paid_at

        receipt = await payment_manager.payout(payment.payment_hash, SELLER_ADDRESS)

        assert receipt.amount_sats == 10_000
        assert receipt.lightning_address == SELLER_ADDRESS
        assert receipt.tx_id
        assert payment.status == PaymentStatus.SETTLED
        assert payment.payout_tx_id == receipt.tx_id
        assert payment.seller_lightning_address == SELLER_ADDRESS
        assert payment.paid_at == paid_at
        assert fake_wallet.sent == ["lnbc10000n1payout"]
        # Seller is paid the item price; the fee stays with the platform
        assert lnurl_server.requests[-1].url.params["amount"] == "10000000"
        assert [type(e) for e in published] == [PaymentCreated, PaymentPaid, PaymentSettled]

        with pytest.raises(PaymentAlreadySettledError):
            await payment_manager.payout(payment.payment_hash, SELLER_ADDRESS)
        assert len(fake_wallet.sent) == 1

    @pytest.mark.asyncio
    async def test_pending_payment_makes_no_network_call(
        self, payment_manager, fake_wallet, lnurl_server
    ):
        payment = await payment_manager.create_invoice(_request())

        with pytest.raises(PaymentNotReadyError):
            await payment_manager.payout(payment.payment_hash, SELLER_ADDRESS)

        assert lnurl_server.requests == []
        assert fake_wallet.sent == []

    @pytest.mark.asyncio
    async def test_unknown_payment(self, payment_manager):
        with pytest.raises(PaymentNotFoundError):
            await payment_manager.payout("0" * 64, SELLER_ADDRESS)

    @pytest.mark.asyncio
    async def test_invalid_address(self, payment_manager, lnurl_server):
        payment = await payment_manager.create_invoice(_request())
        await payment_manager.confirm_paid(payment.payment_hash)

        with pytest.raises(InvalidAddressError):
            await payment_manager.payout(payment.payment_hash, "not an address")
        assert lnurl_server.requests == []

    @pytest.mark.asyncio
    async def test_send_failure_keeps_payment_paid(
        self, payment_manager, fake_wallet, published
    ):
        payment = await payment_manager.create_invoice(_request())
        await payment_manager.confirm_paid(payment.payment_hash)
        fake_wallet.fail_send = True

        with pytest.raises(PayoutFailedError):
            await payment_manager.payout(payment.payment_hash, SELLER_ADDRESS)

        assert payment.status == PaymentStatus.PAID
        assert payment.payout_tx_id is None
        assert isinstance(published[-1], PayoutFailed)

        # Retry succeeds once the wallet recovers
        fake_wallet.fail_send = False
        receipt = await payment_manager.payout(payment.payment_hash, SELLER_ADDRESS)
        assert payment.status == PaymentStatus.SETTLED
        assert receipt.tx_id == payment.payout_tx_id

    @pytest.mark.asyncio
    async def test_resolution_failure_keeps_payment_paid(
        self, payment_manager, fake_wallet, lnurl_server
    ):
        payment = await payment_manager.create_invoice(_request())
        await payment_manager.confirm_paid(payment.payment_hash)
        lnurl_server.discovery_status = 404

        with pytest.raises(AddressDiscoveryError):
            await payment_manager.payout(payment.payment_hash, SELLER_ADDRESS)

        assert payment.status == PaymentStatus.PAID
        assert fake_wallet.sent == []

    @pytest.mark.asyncio
    async def test_malformed_callback_fails_closed(
        self, payment_manager, fake_wallet, lnurl_server, published
    ):
        payment = await payment_manager.create_invoice(_request())
        await payment_manager.confirm_paid(payment.payment_hash)
        lnurl_server.discovery_body = {"callback": "http://[::1"}

        with pytest.raises(AddressDiscoveryError):
            await payment_manager.payout(payment.payment_hash, SELLER_ADDRESS)

        assert payment.status == PaymentStatus.PAID
        assert fake_wallet.sent == []
        assert isinstance(published[-1], PayoutFailed)

    @pytest.mark.asyncio
    async def test_timeout(self, fake_wallet, payment_repository, event_bus, clock):
        class HangingResolver:
            async def resolve(self, address, amount_sats):
                await asyncio.sleep(3600)

        manager = PaymentLifecycleManager(
            wallet=fake_wallet,
            repository=payment_repository,
            resolver=HangingResolver(),
            event_bus=event_bus,
            payout_timeout_seconds=0.05,
            clock=clock,
        )
        payment = await manager.create_invoice(_request())
        await manager.confirm_paid(payment.payment_hash)

        with pytest.raises(PayoutFailedError, match="timed out"):
            await manager.payout(payment.payment_hash, SELLER_ADDRESS)
        assert payment.status == PaymentStatus.PAID

    @pytest.mark.asyncio
    async def test_concurrent_payouts_send_once(self, payment_manager, fake_wallet):
        payment = await payment_manager.create_invoice(_request())
        await payment_manager.confirm_paid(payment.payment_hash)

        results = await asyncio.gather(
            payment_manager.payout(payment.payment_hash, SELLER_ADDRESS),
            payment_manager.payout(payment.payment_hash, SELLER_ADDRESS),
            return_exceptions=True,
        )

        assert sum(isinstance(r, PaymentAlreadySettledError) for r in results) == 1
        assert len(fake_wallet.sent) == 1


class TestQueries:
    @pytest.mark.asyncio
    async def test_payment_history(self, payment_manager, clock):
        first = await payment_manager.create_invoice(_request("a"))
        clock.advance(10)
        second = await payment_manager.create_invoice(_request("b"))

        history = payment_manager.payment_history(BUYER_PUBKEY)

        assert history == [second, first]
        assert payment_manager.payment_history(SELLER_PUBKEY) == [second, first]
        assert payment_manager.payment_history(REVIEWER_PUBKEY) == []

    @pytest.mark.asyncio
    async def test_payment_for_listing_prefers_live(self, payment_manager, clock):
        failed = await payment_manager.create_invoice(_request())
        await payment_manager.mark_failed(failed.payment_hash)
        clock.advance(10)
        live = await payment_manager.create_invoice(_request())

        assert payment_manager.payment_for_listing("bike-001") is live
        assert payment_manager.payment_for_listing("unknown") is None


def test_factory_reads_settings(fake_wallet, payment_repository, resolver):
    settings = Settings(platform_fee_percent=5, invoice_expiry_seconds=600)

    manager = create_payment_service(
        settings, wallet=fake_wallet, repository=payment_repository, resolver=resolver
    )

    assert manager.fee_percent == 5
    assert manager.invoice_expiry_seconds == 600
    assert manager.repository is payment_repository
