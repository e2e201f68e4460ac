"""
Pytest configuration and global fixtures.

Collaborator fakes live in ``tests.fakes``; this module wires them into
fixtures shared by every test package.
"""

import httpx
import pytest

from shiftmarket.core.events.base import GlobalEventBus
from shiftmarket.lightning.application.services.payment_service import PaymentLifecycleManager
from shiftmarket.lightning.infrastructure.lnurl_resolver import LightningAddressResolver
from shiftmarket.lightning.infrastructure.repository import InMemoryPaymentRepository
from shiftmarket.utils.config import reset_settings
from tests.fakes import FakeClock, FakeWallet, LnurlServer


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Each test reads settings from a clean slate."""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def event_bus():
    """Isolated event bus."""
    return GlobalEventBus()


@pytest.fixture
def fake_wallet():
    return FakeWallet()


@pytest.fixture
def payment_repository():
    return InMemoryPaymentRepository()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def lnurl_server():
    return LnurlServer()


@pytest.fixture
def resolver(lnurl_server):
    """Resolver whose HTTP traffic goes to the in-memory Lightning address host."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(lnurl_server))
    return LightningAddressResolver(client=client)


@pytest.fixture
def payment_manager(fake_wallet, payment_repository, resolver, event_bus, clock):
    """Payment lifecycle manager wired to fakes."""
    return PaymentLifecycleManager(
        wallet=fake_wallet,
        repository=payment_repository,
        resolver=resolver,
        event_bus=event_bus,
        fee_percent=2,
        invoice_expiry_seconds=3600,
        payout_timeout_seconds=5.0,
        clock=clock,
    )
