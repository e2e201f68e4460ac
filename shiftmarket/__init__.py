"""shiftmarket - peer-to-peer marketplace data and Lightning escrow payments."""

__version__ = "0.1.0"

from shiftmarket.lightning.application.services.payment_service import (  # noqa: E402
    RECOMMENDED_POLL_INTERVAL_SECONDS,
    PaymentLifecycleManager,
    create_payment_service,
)
from shiftmarket.lightning.domain.value_objects import (  # noqa: E402
    PaymentRequest,
    calculate_platform_fee,
    calculate_total_amount,
    convert_gbp_to_sats,
    convert_sats_to_gbp,
)
from shiftmarket.lightning.infrastructure.lnurl_resolver import (  # noqa: E402
    LightningAddressResolver,
    is_valid_lightning_address,
    resolve_lightning_address,
)
from shiftmarket.marketplace.application.services import (  # noqa: E402
    ListingQueryService,
    ReputationService,
    aggregate_reputation,
    get_listing,
    query_listings,
)
from shiftmarket.marketplace.domain.regions import matches_region  # noqa: E402
from shiftmarket.marketplace.infrastructure.event_codec import (  # noqa: E402
    build_listing_event,
    build_review_event,
    decode_listing,
    decode_review,
)

__all__ = [
    "__version__",
    "RECOMMENDED_POLL_INTERVAL_SECONDS",
    "LightningAddressResolver",
    "ListingQueryService",
    "PaymentLifecycleManager",
    "PaymentRequest",
    "ReputationService",
    "aggregate_reputation",
    "build_listing_event",
    "build_review_event",
    "calculate_platform_fee",
    "calculate_total_amount",
    "convert_gbp_to_sats",
    "convert_sats_to_gbp",
    "create_payment_service",
    "decode_listing",
    "decode_review",
    "get_listing",
    "is_valid_lightning_address",
    "matches_region",
    "query_listings",
    "resolve_lightning_address",
]
