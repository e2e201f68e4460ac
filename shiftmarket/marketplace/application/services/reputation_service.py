"""Seller reputation service."""

from collections.abc import Iterable

from shiftmarket.marketplace.domain.value_objects import (
    REVIEW_KIND,
    VERIFIED_MIN_AVERAGE,
    VERIFIED_MIN_REVIEWS,
    Review,
    SellerReputation,
)
from shiftmarket.marketplace.infrastructure.event_codec import decode_reviews
from shiftmarket.marketplace.infrastructure.relay_client import (
    EventQueryClient,
    create_relay_pool,
)
from shiftmarket.utils.config import Settings, get_settings
from shiftmarket.utils.logging import get_logger

logger = get_logger(__name__)


def aggregate_reputation(reviews: Iterable[Review]) -> SellerReputation:
    """Fold reviews into a reputation.

    The result does not depend on review order. No rounding is applied to the
    average; a seller is verified with at least 10 reviews averaging 4.5 or more.
    """
    ratings = [review.rating for review in reviews]
    if not ratings:
        return SellerReputation()

    # Integer sum keeps the average independent of ordering
    average = sum(ratings) / len(ratings)
    return SellerReputation(
        average_rating=average,
        total_reviews=len(ratings),
        is_verified=len(ratings) >= VERIFIED_MIN_REVIEWS and average >= VERIFIED_MIN_AVERAGE,
    )


class ReputationService:
    """Queries review events tagging a seller and aggregates them."""

    def __init__(self, client: EventQueryClient, timeout_seconds: float = 2.0):
        self.client = client
        self.timeout = timeout_seconds

    async def _fetch_reviews(self, seller_pubkey: str, limit: int) -> list[Review]:
        events = await self.client.query(
            [{"kinds": [REVIEW_KIND], "#p": [seller_pubkey], "limit": limit}],
            timeout=self.timeout,
        )
        return decode_reviews(events)

    async def get_seller_reputation(self, seller_pubkey: str) -> SellerReputation:
        """Compute a seller's reputation from up to 100 reviews."""
        if not seller_pubkey:
            return SellerReputation()

        reputation = aggregate_reputation(await self._fetch_reviews(seller_pubkey, limit=100))
        logger.debug(
            "seller_reputation_computed",
            seller=seller_pubkey[:8],
            total_reviews=reputation.total_reviews,
            verified=reputation.is_verified,
        )
        return reputation

    async def get_seller_reviews(self, seller_pubkey: str, limit: int = 10) -> list[Review]:
        """Reviews about a seller, newest first."""
        if not seller_pubkey:
            return []

        reviews = await self._fetch_reviews(seller_pubkey, limit=limit)
        return sorted(reviews, key=lambda review: review.timestamp, reverse=True)


def create_reputation_service(
    settings: Settings | None = None,
    client: EventQueryClient | None = None,
) -> ReputationService:
    """Factory function to create the reputation service from settings."""
    if settings is None:
        settings = get_settings()

    return ReputationService(
        client=client or create_relay_pool(settings),
        timeout_seconds=settings.reputation_query_timeout_seconds,
    )
