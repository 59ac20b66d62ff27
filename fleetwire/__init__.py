"""Fleetwire: WhatsApp connection lifecycle and notification pipeline."""

__version__ = "0.1.0"
