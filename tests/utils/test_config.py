"""Tests for application settings."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from shiftmarket.utils.config import Settings, get_settings, reset_settings


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.chdir("/")
        settings = Settings()

        assert settings.default_region == "GB"
        assert settings.platform_fee_percent == 2
        assert settings.invoice_expiry_seconds == 3600
        assert settings.listing_query_timeout_seconds == 3.0
        assert settings.listing_lookup_timeout_seconds == 2.0
        assert settings.payment_poll_interval_seconds == 2.0
        assert settings.btc_gbp_fallback_rate == Decimal("50000")
        assert settings.relay_urls

    def test_environment_prefix(self, monkeypatch):
        monkeypatch.setenv("SHIFTMARKET_DEFAULT_REGION", "US")
        monkeypatch.setenv("SHIFTMARKET_PLATFORM_FEE_PERCENT", "5")
        monkeypatch.setenv("SHIFTMARKET_RELAY_URLS", '["wss://relay.example"]')
        monkeypatch.setenv("SHIFTMARKET_WALLET_API_TOKEN", "secret-token")

        settings = Settings()

        assert settings.default_region == "US"
        assert settings.platform_fee_percent == 5
        assert settings.relay_urls == ["wss://relay.example"]
        assert settings.wallet_api_token.get_secret_value() == "secret-token"
        assert "secret-token" not in repr(settings)

    @pytest.mark.parametrize(
        "field,value",
        [
            ("platform_fee_percent", -1),
            ("platform_fee_percent", 101),
            ("listing_query_timeout_seconds", 0),
            ("invoice_expiry_seconds", 10),
            ("btc_gbp_fallback_rate", 0),
        ],
    )
    def test_rejects_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            Settings(**{field: value})


def test_get_settings_is_cached_until_reset(monkeypatch):
    first = get_settings()
    assert get_settings() is first

    monkeypatch.setenv("SHIFTMARKET_DEFAULT_REGION", "AU")
    reset_settings()

    assert get_settings().default_region == "AU"
