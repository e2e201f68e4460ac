"""Marketplace listings, regions and seller reputation."""
