"""API routers for all endpoints."""

from admetrics.routers import metrics

__all__ = ["metrics"]
