"""Shared utilities: configuration, logging and display formatting."""
