"""API routes."""

from collector_earnings.api.routes.earnings import router as earnings_router
from collector_earnings.api.routes.health import router as health_router
from collector_earnings.api.routes.webhooks import router as webhooks_router

__all__ = ["earnings_router", "health_router", "webhooks_router"]
