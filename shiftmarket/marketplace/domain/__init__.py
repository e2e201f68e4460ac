"""Domain layer for the marketplace: listings, reviews, reputation and regions."""
