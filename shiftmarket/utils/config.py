"""Application settings.

Pydantic-based configuration loaded from environment variables and an
optional `.env` file.

Environment Variables (prefix SHIFTMARKET_):
- SHIFTMARKET_RELAY_URLS: JSON list of relay websocket URLs
- SHIFTMARKET_DEFAULT_REGION: Region code applied to listing queries (default: GB)
- SHIFTMARKET_WALLET_API_URL / SHIFTMARKET_WALLET_API_TOKEN: Wallet HTTP API
- SHIFTMARKET_PLATFORM_FEE_PERCENT: Platform fee in whole percent (default: 2)
"""

from decimal import Decimal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """shiftmarket configuration.

    Example:
        >>> settings = Settings(default_region="US")
        >>> settings.listing_query_timeout_seconds
        3.0
    """

    model_config = SettingsConfigDict(
        env_prefix="SHIFTMARKET_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Relay / listing queries
    relay_urls: list[str] = Field(
        default_factory=lambda: [
            "wss://relay.damus.io",
            "wss://nos.lol",
            "wss://relay.nostr.band",
        ],
        description="Relays queried for listing and review events",
    )
    default_region: str = Field(default="GB", description="Region code used when none is selected")
    listing_query_timeout_seconds: float = Field(default=3.0, gt=0, le=60)
    listing_lookup_timeout_seconds: float = Field(default=2.0, gt=0, le=60)
    reputation_query_timeout_seconds: float = Field(default=2.0, gt=0, le=60)
    listing_query_limit: int = Field(default=100, ge=1, le=1000)

    # Wallet API (invoicing + payment send)
    wallet_api_url: str = Field(default="https://api.getalby.com")
    wallet_api_token: SecretStr | None = Field(default=None)
    http_timeout_seconds: float = Field(default=10.0, gt=0, le=120)
    payout_timeout_seconds: float = Field(default=30.0, gt=0, le=300)

    # Payment policy
    platform_fee_percent: int = Field(default=2, ge=0, le=100)
    invoice_expiry_seconds: int = Field(default=3600, ge=60)
    payment_poll_interval_seconds: float = Field(default=2.0, gt=0)

    # Exchange rates
    coingecko_enabled: bool = Field(default=True)
    btc_gbp_fallback_rate: Decimal = Field(default=Decimal("50000"), gt=0)
    rate_cache_ttl_seconds: int = Field(default=300, ge=0)

    # Webhooks
    webhook_secret: SecretStr | None = Field(default=None)

    # Logging
    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=False)
    dev_mode: bool = Field(default=True)


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
