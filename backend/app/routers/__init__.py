"""API Routers for Field Jobs."""

from app.routers.jobs import router as jobs_router
from app.routers.events import router as events_router
from app.routers.catalog import router as catalog_router

__all__ = [
    "jobs_router",
    "events_router",
    "catalog_router",
]
