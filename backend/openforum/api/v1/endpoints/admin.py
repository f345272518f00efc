"""
Admin API Endpoints.

Analytics dashboards and database maintenance.
"""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from openforum.core.cache import CacheService, get_cache, invalidate_after_commit
from openforum.core.database import get_db
from openforum.models.user import User
from openforum.modules.analytics.service import AnalyticsService
from openforum.modules.auth.dependencies import get_current_user
from openforum.modules.moderation.maintenance import MaintenanceService

router = APIRouter()

STATS_CACHE_TAGS = (
    "forum-stats",
    "user-stats",
    "forum-analytics",
    "engagement-metrics",
    "content-metrics",
)


# ==================== Analytics ====================


@router.get("/analytics")
async def get_analytics(
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
) -> dict[str, Any]:
    """Totals and daily activity for a date range (last 30 days by default)."""
    analytics = AnalyticsService(db)

    async def load() -> dict[str, Any]:
        return await analytics.get_analytics(user, start_date, end_date)

    # Only the default range is cached; non-admins always hit the permission check
    if start_date or end_date or not user.is_admin:
        data = await load()
    else:
        data = await cache.remember("forum-analytics", ["forum-analytics"], load, ttl=600)
    return {"success": True, "analytics": data}


@router.get("/analytics/engagement")
async def get_engagement(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
) -> dict[str, Any]:
    analytics = AnalyticsService(db)

    async def load() -> dict[str, Any]:
        return await analytics.get_engagement_metrics(user)

    if not user.is_admin:
        data = await load()
    else:
        data = await cache.remember(
            "engagement-metrics", ["engagement-metrics"], load, ttl=600
        )
    return {"success": True, "metrics": data}


@router.get("/analytics/content")
async def get_content(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
) -> dict[str, Any]:
    analytics = AnalyticsService(db)

    async def load() -> dict[str, Any]:
        return await analytics.get_content_metrics(user)

    if not user.is_admin:
        data = await load()
    else:
        data = await cache.remember("content-metrics", ["content-metrics"], load, ttl=600)
    return {"success": True, "metrics": data}


# ==================== Maintenance ====================


@router.post("/maintenance")
async def run_maintenance(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
) -> dict[str, Any]:
    """Clean up old notifications, inactive accounts and orphaned posts."""
    stats = await MaintenanceService(db).perform_maintenance(user)
    await invalidate_after_commit(db, cache, *STATS_CACHE_TAGS)
    return {"success": True, "stats": stats}


@router.get("/maintenance")
async def maintenance_info(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return {"success": True, "info": await MaintenanceService(db).get_maintenance_info(user)}


@router.post("/maintenance/optimize")
async def optimize_database(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    message = await MaintenanceService(db).optimize_database(user)
    return {"success": True, "message": message}


@router.get("/export")
async def export_data(
    format: str = Query("json", pattern="^(json|csv)$"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Response:
    """Download users, threads and posts."""
    content = await MaintenanceService(db).export_data(user, format)
    filename = f"forum-export-{datetime.utcnow():%Y-%m-%d}.{format}"
    return Response(
        content=content,
        media_type="application/json" if format == "json" else "text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
