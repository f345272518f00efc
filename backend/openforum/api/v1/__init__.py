"""
API Version 1 Router.

Combines all API endpoints under /api/v1 prefix.
"""

from fastapi import APIRouter

from openforum.api.v1.endpoints import (
    admin,
    auth,
    forum,
    moderation,
    notifications,
    search,
    users,
    webhooks,
)

router = APIRouter()

# Include endpoint routers
router.include_router(auth.router, prefix="/auth", tags=["Auth"])
router.include_router(forum.router, prefix="/forum", tags=["Forum"])
router.include_router(users.router, prefix="/users", tags=["Users"])
router.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
router.include_router(moderation.router, prefix="/moderation", tags=["Moderation"])
router.include_router(admin.router, prefix="/admin", tags=["Admin"])
router.include_router(search.router, prefix="/search", tags=["Search"])
router.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])
