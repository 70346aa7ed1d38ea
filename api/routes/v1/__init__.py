"""v1 API routes.

All routes in this module are mounted under /api and follow the pattern:
/api/v1/{resource}/...
"""

from api.routes.v1.pools import router as pools_router
from api.routes.v1.seats import router as seats_router
from api.routes.v1.subscriptions import router as subscriptions_router
from api.routes.v1.status_sync import router as status_sync_router

__all__ = [
    "pools_router",
    "seats_router",
    "subscriptions_router",
    "status_sync_router",
]
