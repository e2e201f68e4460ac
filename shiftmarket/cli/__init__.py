"""Command-line interface for shiftmarket."""
