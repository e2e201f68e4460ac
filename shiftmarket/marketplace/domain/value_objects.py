"""Domain value objects for the marketplace.

Listings and reviews are decoded from relay events on every query and never
mutated afterwards, so they are modelled as frozen dataclasses.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from .enums import ListingStatus

# Protocol event kinds
LISTING_KIND = 30402  # Replaceable classified listing
REVIEW_KIND = 1985  # Label event used for seller reviews

MIN_RATING = 1
MAX_RATING = 5

VERIFIED_MIN_REVIEWS = 10
VERIFIED_MIN_AVERAGE = 4.5


@dataclass(frozen=True)
class Listing:
    """One item for sale.

    `id` comes from the replaceable `d` tag and stays stable across edits;
    `category` is an unordered set of tags; `images` keeps publication order,
    the first image being the primary one.
    """

    id: str
    title: str
    description: str
    price: Decimal
    currency: str
    location: str
    published_at: int
    seller_pubkey: str
    category: frozenset[str] = frozenset()
    images: tuple[str, ...] = ()
    status: ListingStatus = ListingStatus.ACTIVE
    summary: str | None = None
    price_sats: int | None = None
    geohash: str | None = None

    @property
    def primary_image(self) -> str | None:
        """First image URL, if any."""
        return self.images[0] if self.images else None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "title": self.title,
            "summary": self.summary,
            "description": self.description,
            "price": str(self.price),
            "currency": self.currency,
            "price_sats": self.price_sats,
            "category": sorted(self.category),
            "location": self.location,
            "geohash": self.geohash,
            "images": list(self.images),
            "status": self.status.value,
            "published_at": self.published_at,
            "seller_pubkey": self.seller_pubkey,
        }


@dataclass(frozen=True)
class Review:
    """A 1-5 star rating left about a seller."""

    rating: int
    reviewer_pubkey: str
    timestamp: int
    content: str = ""
    listing_id: str | None = None


@dataclass(frozen=True)
class SellerReputation:
    """Aggregate of a seller's reviews. Derived, never stored."""

    average_rating: float = 0.0
    total_reviews: int = 0
    is_verified: bool = False


@dataclass(frozen=True)
class ListingFilters:
    """Caller-supplied constraints for a listing query.

    `location` is a free-text substring search; when given it replaces the
    region keyword filter. `region` overrides the service's selected region.
    """

    category: str | None = None
    seller_pubkey: str | None = None
    location: str | None = None
    min_price: Decimal | None = None
    max_price: Decimal | None = None
    search: str | None = None
    status: ListingStatus | None = None
    region: str | None = None
