"""Command-line interface for Fleetwire."""
