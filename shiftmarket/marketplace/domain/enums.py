"""Domain enums for the marketplace."""

from enum import Enum


class ListingStatus(str, Enum):
    """Availability of a listing as published by its seller."""

    ACTIVE = "active"
    SOLD = "sold"
    RESERVED = "reserved"

    def __str__(self) -> str:
        return self.value
