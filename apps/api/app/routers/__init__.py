"""API routers."""

from app.routers.calendar import router as calendar_router
from app.routers.integrations import router as integrations_router
from app.routers.internal import router as internal_router
from app.routers.series import router as series_router
from app.routers.webhooks import router as webhooks_router

__all__ = [
    "calendar_router",
    "integrations_router",
    "internal_router",
    "series_router",
    "webhooks_router",
]
