"""HTTP surface: health checks, gateway callbacks and collector endpoints."""

from collector_earnings.api.app import create_app

__all__ = ["create_app"]
