"""Application services for listings and seller reputation."""

from .listing_service import (
    ListingQueryService,
    create_listing_service,
    get_listing,
    query_listings,
)
from .reputation_service import ReputationService, aggregate_reputation, create_reputation_service

__all__ = [
    "ListingQueryService",
    "ReputationService",
    "aggregate_reputation",
    "create_listing_service",
    "create_reputation_service",
    "get_listing",
    "query_listings",
]
