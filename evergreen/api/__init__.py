"""API routes."""

from evergreen.api.entities import router as entities_router
from evergreen.api.webhooks import router as webhooks_router

__all__ = ["entities_router", "webhooks_router"]
