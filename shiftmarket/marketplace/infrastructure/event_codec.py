"""Codec between relay events and marketplace records.

Relay events come from an open network where anyone can publish malformed
tags, so decoding is total: any structural problem makes ``decode_listing`` /
``decode_review`` return None and is logged at debug level only.

Event shape::

    {"id": str, "pubkey": str, "created_at": int, "kind": int,
     "content": str, "tags": [[name, value, ...], ...]}
"""

import time
from collections.abc import Iterable, Mapping, Sequence
from decimal import Decimal, InvalidOperation
from typing import Any

from shiftmarket.exceptions import ValidationError
from shiftmarket.marketplace.domain.enums import ListingStatus
from shiftmarket.marketplace.domain.value_objects import (
    LISTING_KIND,
    MAX_RATING,
    MIN_RATING,
    REVIEW_KIND,
    Listing,
    Review,
)
from shiftmarket.utils.logging import get_logger

logger = get_logger(__name__)

Event = Mapping[str, Any]


def _tags(event: Any) -> list[Sequence[str]] | None:
    """Return the well-formed tags of an event, or None if the tag array is missing."""
    if not isinstance(event, Mapping):
        return None
    tags = event.get("tags")
    if not isinstance(tags, list):
        return None
    return [
        tag
        for tag in tags
        if isinstance(tag, (list, tuple)) and tag and all(isinstance(part, str) for part in tag)
    ]


def _first(tags: Iterable[Sequence[str]], name: str) -> Sequence[str] | None:
    return next((tag for tag in tags if tag[0] == name), None)


def _value(tags: Iterable[Sequence[str]], name: str) -> str | None:
    tag = _first(tags, name)
    if tag is None or len(tag) < 2:
        return None
    return tag[1]


def _values(tags: Iterable[Sequence[str]], name: str) -> list[str]:
    return [tag[1] for tag in tags if tag[0] == name and len(tag) >= 2]


def _parse_int(raw: Any) -> int | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if not isinstance(raw, str):
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


def _parse_price(raw: str) -> Decimal | None:
    try:
        amount = Decimal(raw.strip())
    except InvalidOperation:
        return None
    if not amount.is_finite() or amount < 0:
        return None
    return amount


def decode_listing(event: Event) -> Listing | None:
    """Decode a listing event. Never raises.

    Required: `d` (id), `title`, `price` as ``[amount, currency]`` with a
    finite non-negative amount, and `location`. Secondary fields degrade to
    absent: an unparseable `price_sats` is dropped, an unparseable
    `published_at` falls back to the event's own `created_at`, and an unknown
    `status` reads as active.
    """
    tags = _tags(event)
    if tags is None:
        logger.debug("listing_decode_skipped", reason="missing_tags")
        return None

    listing_id = _value(tags, "d")
    title = _value(tags, "title")
    price_tag = _first(tags, "price")
    location = _value(tags, "location")

    if not listing_id or not title or price_tag is None or not location:
        logger.debug(
            "listing_decode_skipped",
            reason="missing_required_field",
            event_id=event.get("id"),
            has_id=bool(listing_id),
            has_title=bool(title),
            has_price=price_tag is not None,
            has_location=bool(location),
        )
        return None

    if len(price_tag) < 3 or not price_tag[2]:
        logger.debug("listing_decode_skipped", reason="missing_currency", event_id=event.get("id"))
        return None

    price = _parse_price(price_tag[1])
    if price is None:
        logger.debug("listing_decode_skipped", reason="invalid_price", event_id=event.get("id"))
        return None

    seller_pubkey = event.get("pubkey")
    if not isinstance(seller_pubkey, str):
        logger.debug("listing_decode_skipped", reason="invalid_envelope", event_id=event.get("id"))
        return None

    # created_at only matters as the fallback for published_at
    published_at = _parse_int(_value(tags, "published_at"))
    if published_at is None:
        published_at = _parse_int(event.get("created_at"))
    if published_at is None:
        logger.debug("listing_decode_skipped", reason="missing_timestamp", event_id=event.get("id"))
        return None

    price_sats = _parse_int(_value(tags, "price_sats"))
    if price_sats is not None and price_sats < 0:
        price_sats = None

    try:
        status = ListingStatus(_value(tags, "status") or ListingStatus.ACTIVE.value)
    except ValueError:
        status = ListingStatus.ACTIVE

    content = event.get("content")

    return Listing(
        id=listing_id,
        title=title,
        summary=_value(tags, "summary"),
        description=content if isinstance(content, str) else "",
        price=price,
        currency=price_tag[2],
        price_sats=price_sats,
        category=frozenset(_values(tags, "t")),
        location=location,
        geohash=_value(tags, "g"),
        images=tuple(_values(tags, "image")),
        status=status,
        published_at=published_at,
        seller_pubkey=seller_pubkey,
    )


def decode_review(event: Event) -> Review | None:
    """Decode a review event. Never raises.

    Only the `rating` tag is required and it must be an integer in 1..5;
    ``"4.5"`` is rejected rather than truncated.
    """
    tags = _tags(event)
    if tags is None:
        return None

    rating = _parse_int(_value(tags, "rating"))
    if rating is None or not MIN_RATING <= rating <= MAX_RATING:
        logger.debug("review_decode_skipped", reason="invalid_rating", event_id=event.get("id"))
        return None

    content = event.get("content")
    reviewer = event.get("pubkey")
    timestamp = _parse_int(event.get("created_at"))

    return Review(
        rating=rating,
        content=content if isinstance(content, str) else "",
        reviewer_pubkey=reviewer if isinstance(reviewer, str) else "",
        listing_id=_value(tags, "e"),
        timestamp=timestamp if timestamp is not None else 0,
    )


def decode_listings(events: Iterable[Event]) -> list[Listing]:
    """Decode many events, silently dropping the ones that fail."""
    return [listing for listing in map(decode_listing, events) if listing is not None]


def decode_reviews(events: Iterable[Event]) -> list[Review]:
    """Decode many events, silently dropping the ones that fail."""
    return [review for review in map(decode_review, events) if review is not None]


# =============================================================================
# Unsigned event templates (signing is done by the key-management collaborator)
# =============================================================================


def build_review_event(
    seller_pubkey: str,
    rating: int,
    comment: str = "",
    listing_id: str | None = None,
    created_at: int | None = None,
) -> dict[str, Any]:
    """Build an unsigned review event.

    Raises:
        ValidationError: If the rating is not an integer in 1..5 or the seller is missing
    """
    if not seller_pubkey:
        raise ValidationError("Seller pubkey is required", field="seller_pubkey")
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise ValidationError("Rating must be an integer", field="rating", value=rating)
    if not MIN_RATING <= rating <= MAX_RATING:
        raise ValidationError(
            f"Rating must be between {MIN_RATING} and {MAX_RATING}",
            field="rating",
            value=rating,
            constraint=f"{MIN_RATING}<=rating<={MAX_RATING}",
        )

    tags: list[list[str]] = [["p", seller_pubkey], ["rating", str(rating)]]
    if listing_id:
        tags.append(["e", listing_id])

    return {
        "kind": REVIEW_KIND,
        "content": comment,
        "tags": tags,
        "created_at": created_at if created_at is not None else int(time.time()),
    }


def build_listing_event(
    listing_id: str,
    title: str,
    description: str,
    price: Decimal | float | str,
    currency: str,
    location: str,
    *,
    categories: Iterable[str] = (),
    images: Iterable[str] = (),
    status: ListingStatus = ListingStatus.ACTIVE,
    summary: str | None = None,
    price_sats: int | None = None,
    geohash: str | None = None,
    published_at: int | None = None,
    created_at: int | None = None,
) -> dict[str, Any]:
    """Build an unsigned listing event in the layout ``decode_listing`` reads.

    Raises:
        ValidationError: If a mandatory field is empty or the price is not a finite
            non-negative number
    """
    for name, value in (
        ("listing_id", listing_id),
        ("title", title),
        ("currency", currency),
        ("location", location),
    ):
        if not value:
            raise ValidationError(f"{name} is required", field=name)

    amount = _parse_price(str(price))
    if amount is None:
        raise ValidationError("Price must be a non-negative number", field="price", value=price)

    now = int(time.time())
    tags: list[list[str]] = [
        ["d", listing_id],
        ["title", title],
        ["price", str(amount), currency],
        ["location", location],
        ["status", status.value],
        ["published_at", str(published_at if published_at is not None else now)],
    ]
    if summary:
        tags.append(["summary", summary])
    if price_sats is not None:
        tags.append(["price_sats", str(price_sats)])
    if geohash:
        tags.append(["g", geohash])
    tags.extend(["t", category] for category in categories)
    tags.extend(["image", url] for url in images)

    return {
        "kind": LISTING_KIND,
        "content": description,
        "tags": tags,
        "created_at": created_at if created_at is not None else now,
    }
