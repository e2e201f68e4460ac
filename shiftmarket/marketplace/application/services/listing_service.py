"""Listing query service.

Combines the relay query, the event codec, the region filter and the
client-side predicate filters into one ordered result.
"""

from collections.abc import Callable

from shiftmarket.marketplace.domain.enums import ListingStatus
from shiftmarket.marketplace.domain.regions import matches_region
from shiftmarket.marketplace.domain.value_objects import LISTING_KIND, Listing, ListingFilters
from shiftmarket.marketplace.infrastructure.event_codec import decode_listing, decode_listings
from shiftmarket.marketplace.infrastructure.relay_client import (
    EventQueryClient,
    create_relay_pool,
)
from shiftmarket.utils.config import Settings, get_settings
from shiftmarket.utils.logging import get_logger

logger = get_logger(__name__)

ListingPredicate = Callable[[Listing], bool]


def _matches_search(listing: Listing, needle: str) -> bool:
    haystacks = (listing.title, listing.description, listing.summary or "")
    return any(needle in text.lower() for text in haystacks)


def build_predicates(filters: ListingFilters, region_code: str) -> list[ListingPredicate]:
    """Translate filters into the conjunctive list of client-side predicates.

    An explicit free-text `location` replaces the region keyword filter.
    """
    predicates: list[ListingPredicate] = []

    if filters.location:
        needle = filters.location.lower()
        predicates.append(lambda listing: needle in listing.location.lower())
    else:
        predicates.append(
            lambda listing: matches_region(listing.location, listing.currency, region_code)
        )

    if filters.category:
        category = filters.category
        predicates.append(lambda listing: category in listing.category)

    if filters.seller_pubkey:
        seller = filters.seller_pubkey
        predicates.append(lambda listing: listing.seller_pubkey == seller)

    if filters.status is not None:
        status = ListingStatus(filters.status)
        predicates.append(lambda listing: listing.status == status)

    if filters.min_price is not None:
        min_price = filters.min_price
        predicates.append(lambda listing: listing.price >= min_price)

    if filters.max_price is not None:
        max_price = filters.max_price
        predicates.append(lambda listing: listing.price <= max_price)

    if filters.search:
        search = filters.search.lower()
        predicates.append(lambda listing: _matches_search(listing, search))

    return predicates


def sort_newest_first(listings: list[Listing]) -> list[Listing]:
    """Order by `published_at` descending; ties keep their input order."""
    return sorted(listings, key=lambda listing: listing.published_at, reverse=True)


class ListingQueryService:
    """Service for querying marketplace listings from relays."""

    def __init__(
        self,
        client: EventQueryClient,
        region_code: str = "GB",
        query_timeout_seconds: float = 3.0,
        lookup_timeout_seconds: float = 2.0,
        query_limit: int = 100,
    ):
        """Initialize the listing service.

        Args:
            client: Relay query collaborator
            region_code: Currently selected region, applied when no location filter is given
            query_timeout_seconds: Bound on a listing query
            lookup_timeout_seconds: Bound on a single-listing lookup
            query_limit: Max events requested per query
        """
        self.client = client
        self.region_code = region_code
        self.query_timeout = query_timeout_seconds
        self.lookup_timeout = lookup_timeout_seconds
        self.query_limit = query_limit

    def select_region(self, region_code: str) -> None:
        """Change the region applied to subsequent queries."""
        self.region_code = region_code
        logger.info("listing_region_selected", region=region_code)

    async def query_listings(self, filters: ListingFilters | None = None) -> list[Listing]:
        """Query, decode, filter and sort listings.

        Args:
            filters: Optional constraints; all of them must hold

        Returns:
            Matching listings, newest first. Empty if the relays timed out with nothing.

        Raises:
            QueryFailure: If the underlying relay query failed
        """
        filters = filters or ListingFilters()

        relay_filter: dict = {"kinds": [LISTING_KIND], "limit": self.query_limit}
        if filters.category:
            relay_filter["#t"] = [filters.category]
        if filters.seller_pubkey:
            relay_filter["authors"] = [filters.seller_pubkey]

        events = await self.client.query([relay_filter], timeout=self.query_timeout)
        listings = decode_listings(events)

        region_code = filters.region or self.region_code
        predicates = build_predicates(filters, region_code)
        matched = [listing for listing in listings if all(p(listing) for p in predicates)]

        logger.info(
            "listing_query_completed",
            events=len(events),
            decoded=len(listings),
            matched=len(matched),
            region=None if filters.location else region_code,
        )
        return sort_newest_first(matched)

    async def get_listing(self, listing_id: str) -> Listing | None:
        """Look up one listing by its `d` identifier.

        Returns:
            The decoded listing, or None if not found or undecodable

        Raises:
            QueryFailure: If the underlying relay query failed
        """
        if not listing_id:
            return None

        events = await self.client.query(
            [{"kinds": [LISTING_KIND], "#d": [listing_id], "limit": 1}],
            timeout=self.lookup_timeout,
        )
        for event in events:
            listing = decode_listing(event)
            if listing is not None and listing.id == listing_id:
                return listing

        logger.debug("listing_not_found", listing_id=listing_id)
        return None

    async def featured_listings(self, limit: int = 6) -> list[Listing]:
        """Newest active listings that have at least one image."""
        events = await self.client.query(
            [{"kinds": [LISTING_KIND], "limit": limit * 2}],
            timeout=self.query_timeout,
        )
        listings = [
            listing
            for listing in decode_listings(events)
            if listing.status == ListingStatus.ACTIVE and listing.images
        ]
        return sort_newest_first(listings)[:limit]


def create_listing_service(
    settings: Settings | None = None,
    client: EventQueryClient | None = None,
) -> ListingQueryService:
    """Factory function to create the listing service from settings."""
    if settings is None:
        settings = get_settings()

    return ListingQueryService(
        client=client or create_relay_pool(settings),
        region_code=settings.default_region,
        query_timeout_seconds=settings.listing_query_timeout_seconds,
        lookup_timeout_seconds=settings.listing_lookup_timeout_seconds,
        query_limit=settings.listing_query_limit,
    )


async def query_listings(
    filters: ListingFilters | None = None, *, service: ListingQueryService | None = None
) -> list[Listing]:
    """Query listings with a settings-configured service unless one is given."""
    return await (service or create_listing_service()).query_listings(filters)


async def get_listing(
    listing_id: str, *, service: ListingQueryService | None = None
) -> Listing | None:
    """Look up one listing with a settings-configured service unless one is given."""
    return await (service or create_listing_service()).get_listing(listing_id)
