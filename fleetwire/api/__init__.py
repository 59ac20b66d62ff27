"""FastAPI application and HTTP routes for Fleetwire."""
