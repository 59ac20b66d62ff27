"""Shared utilities for Fleetwire."""
