"""Escrow payments over the Lightning Network.

Buyer invoices, status checks, seller payouts and Lightning address resolution.
"""
