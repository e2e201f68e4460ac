"""Infrastructure for the marketplace: event codec and relay access."""
