"""
User API Endpoints.

Member directory, public profiles and profile settings.
"""

from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from openforum.core.cache import CacheService, get_cache
from openforum.core.database import get_db
from openforum.core.exceptions import NotFoundError
from openforum.models.user import User
from openforum.modules.analytics.service import AnalyticsService
from openforum.modules.auth.dependencies import get_current_user
from openforum.modules.forum.validation import ProfileUpdate
from openforum.modules.users.service import UserService, member_to_dict

router = APIRouter()


@router.get("")
async def get_members(
    page: int = Query(1, ge=1),
    search: str = Query(""),
    sort: str = Query("newest", pattern="^(newest|oldest|reputation|name)$"),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Member directory."""
    members = await UserService(db).get_forum_members(page, search, sort, limit)
    return {"success": True, **members}


# ==================== Own profile ====================


@router.patch("/me")
async def update_profile(
    data: ProfileUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    user = await UserService(db).update_user_profile(user, data)
    return {"success": True, "user": member_to_dict(user)}


@router.post("/me/profile-setup-seen")
async def profile_setup_seen(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    await UserService(db).mark_profile_setup_seen(user)
    return {"success": True}


@router.get("/me/profile-completion")
async def profile_completion(user: User = Depends(get_current_user)) -> dict[str, Any]:
    return {"success": True, **UserService.check_profile_completion(user)}


# ==================== Public profiles ====================


@router.get("/{user_id}")
async def get_profile(user_id: int, db: AsyncSession = Depends(get_db)) -> dict[str, Any]:
    """Public profile with recent threads and posts."""
    profile = await UserService(db).get_user_profile(user_id)
    return {"success": True, **profile}


@router.get("/{user_id}/stats")
async def get_user_stats(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
) -> dict[str, Any]:
    async def load() -> dict[str, int] | None:
        return await AnalyticsService(db).get_user_stats(user_id)

    stats = await cache.remember(
        f"user-stats:{user_id}", ["user-stats", f"user-stats-{user_id}"], load
    )
    if stats is None:
        raise NotFoundError("User")
    return {"success": True, "stats": stats}
