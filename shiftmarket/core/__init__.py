"""Core infrastructure shared across the marketplace and lightning packages."""
