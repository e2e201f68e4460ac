"""Exchange rate providers for BTC/GBP conversion.

Used to quote sats for GBP-priced listings that carry no explicit
``price_sats``. Providers are tried in order; the result is cached for a TTL
and a static fallback rate is used when every live provider fails.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal

import httpx

from shiftmarket.exceptions import RateProviderError
from shiftmarket.lightning.domain.value_objects import (
    DEFAULT_BTC_PRICE_GBP,
    convert_gbp_to_sats,
    convert_sats_to_gbp,
)
from shiftmarket.utils.config import Settings, get_settings
from shiftmarket.utils.logging import get_logger

logger = get_logger(__name__)

# Sanity bounds for a live BTC/GBP quote
MIN_REASONABLE_RATE = Decimal("1000")
MAX_REASONABLE_RATE = Decimal("1000000")


@dataclass
class ExchangeRate:
    """Exchange rate data point."""

    btc_gbp_rate: Decimal
    source: str
    timestamp: float
    ttl_seconds: int

    @property
    def is_expired(self) -> bool:
        """Check if rate has expired."""
        return time.time() > (self.timestamp + self.ttl_seconds)


class ExchangeProvider(ABC):
    """Abstract base class for exchange rate providers."""

    def __init__(self, name: str, client: httpx.AsyncClient | None = None):
        self.name = name
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(10.0, connect=5.0), headers={"User-Agent": "shiftmarket/0.1"}
        )

    @abstractmethod
    async def get_btc_gbp_rate(self) -> Decimal:
        """Get current BTC/GBP exchange rate."""

    async def close(self) -> None:
        """Close HTTP client."""
        if self._owns_client:
            await self.client.aclose()


class CoinGeckoProvider(ExchangeProvider):
    """CoinGecko exchange rate provider (free tier)."""

    def __init__(self, client: httpx.AsyncClient | None = None):
        super().__init__("coingecko", client)
        self.base_url = "https://api.coingecko.com/api/v3"

    async def get_btc_gbp_rate(self) -> Decimal:
        """Get BTC/GBP rate from CoinGecko."""
        try:
            response = await self.client.get(
                f"{self.base_url}/simple/price",
                params={"ids": "bitcoin", "vs_currencies": "gbp"},
            )
            response.raise_for_status()
            return Decimal(str(response.json()["bitcoin"]["gbp"]))
        except (httpx.HTTPError, KeyError, TypeError, ValueError, ArithmeticError) as e:
            raise RateProviderError(
                "CoinGecko rate lookup failed", service=self.name, original_error=e
            ) from e


class FallbackProvider(ExchangeProvider):
    """Fallback provider with a static rate."""

    def __init__(self, fallback_rate: Decimal = DEFAULT_BTC_PRICE_GBP):
        super().__init__("fallback")
        self.fallback_rate = fallback_rate

    async def get_btc_gbp_rate(self) -> Decimal:
        """Return fallback rate."""
        return self.fallback_rate


class BTCConversionService:
    """BTC/GBP conversion with provider fallback and caching."""

    def __init__(
        self,
        providers: list[ExchangeProvider],
        fallback: FallbackProvider | None = None,
        cache_ttl_seconds: int = 300,
    ):
        self.providers = providers
        self.fallback = fallback or FallbackProvider()
        self.cache_ttl = cache_ttl_seconds
        self._cached: ExchangeRate | None = None
        self._lock = asyncio.Lock()

    async def get_rate(self) -> ExchangeRate:
        """Current BTC/GBP rate: cached, else first healthy provider, else fallback."""
        async with self._lock:
            if self._cached and not self._cached.is_expired:
                return self._cached

            for provider in self.providers:
                try:
                    rate = await provider.get_btc_gbp_rate()
                except RateProviderError as e:
                    logger.warning("rate_provider_failed", provider=provider.name, error=str(e))
                    continue

                if not MIN_REASONABLE_RATE <= rate <= MAX_REASONABLE_RATE:
                    logger.warning(
                        "rate_provider_unreasonable", provider=provider.name, rate=str(rate)
                    )
                    continue

                self._cached = ExchangeRate(
                    btc_gbp_rate=rate,
                    source=provider.name,
                    timestamp=time.time(),
                    ttl_seconds=self.cache_ttl,
                )
                return self._cached

        rate = await self.fallback.get_btc_gbp_rate()
        logger.info("rate_fallback_used", rate=str(rate))
        return ExchangeRate(
            btc_gbp_rate=rate, source=self.fallback.name, timestamp=time.time(), ttl_seconds=0
        )

    async def gbp_to_sats(self, gbp: Decimal) -> int:
        """Convert a GBP amount to sats at the current rate."""
        rate = await self.get_rate()
        return convert_gbp_to_sats(gbp, rate.btc_gbp_rate)

    async def sats_to_gbp(self, sats: int) -> Decimal:
        """Convert sats to GBP at the current rate."""
        rate = await self.get_rate()
        return convert_sats_to_gbp(sats, rate.btc_gbp_rate)

    async def clear_cache(self) -> None:
        async with self._lock:
            self._cached = None

    async def close(self) -> None:
        """Close all provider connections."""
        for provider in self.providers:
            await provider.close()
        await self.fallback.close()


def create_btc_conversion_service(settings: Settings | None = None) -> BTCConversionService:
    """Factory function to create BTC conversion service from settings."""
    settings = settings or get_settings()

    providers: list[ExchangeProvider] = []
    if settings.coingecko_enabled:
        providers.append(CoinGeckoProvider())

    return BTCConversionService(
        providers=providers,
        fallback=FallbackProvider(fallback_rate=settings.btc_gbp_fallback_rate),
        cache_ttl_seconds=settings.rate_cache_ttl_seconds,
    )
