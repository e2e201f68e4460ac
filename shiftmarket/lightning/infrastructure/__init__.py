"""Infrastructure adapters for the payment path (wallet, Lightning addresses, rates)."""
