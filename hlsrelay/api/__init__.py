"""API routes for HLSRelay"""

from fastapi import APIRouter

from .channels import router as channels_router
from .events import router as events_router
from .health import router as health_router

# JSON API under /api; the event stream lives at the root (/events)
api_router = APIRouter(prefix="/api")
api_router.include_router(channels_router)
api_router.include_router(health_router)

__all__ = [
    "api_router",
    "events_router",
]
