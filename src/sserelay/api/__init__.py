"""API route aggregation.

All routers registered here get mounted in main.py. Paths are served at
the root (no version prefix) because browsers and proxies already point
at /events/... and /health.
"""

from fastapi import APIRouter

from sserelay.api.events import router as events_router
from sserelay.api.health import router as health_router

api_router = APIRouter()

api_router.include_router(health_router, tags=["health"])
api_router.include_router(events_router, tags=["events"])
