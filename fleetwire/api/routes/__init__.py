"""FastAPI route modules.

Exports all route modules for inclusion in the main application.
"""

from fleetwire.api.routes import cron, webhooks, whatsapp

__all__ = [
    "cron",
    "webhooks",
    "whatsapp",
]
