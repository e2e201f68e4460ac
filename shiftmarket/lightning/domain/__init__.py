"""Domain layer for escrow payments over Lightning."""
