"""
Moderation API Endpoints.

Reports, bans, roles and category moderators.
"""

from datetime import datetime
from typing import Any, Literal

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from openforum.core.cache import CacheService, get_cache, invalidate_after_commit
from openforum.core.config import settings
from openforum.core.database import get_db
from openforum.models.user import User, UserRole
from openforum.modules.auth.dependencies import get_current_user, require_role
from openforum.modules.forum.validation import ReportCreate, validate_with_rate_limit
from openforum.modules.moderation.reports import ReportService
from openforum.modules.moderation.roles import RoleService
from openforum.modules.moderation.security import SecurityService
from openforum.modules.webhooks.service import emit_webhook_event

router = APIRouter()


# ==================== Schemas ====================


class ResolveReportRequest(BaseModel):
    action: Literal["dismiss", "warn", "moderate", "ban"]
    admin_notes: str | None = None


class BanRequest(BaseModel):
    reason: str
    expires_at: datetime | None = None


class RoleRequest(BaseModel):
    role: str


class ModeratorRequest(BaseModel):
    user_id: int


def _ban_event(
    user_id: int, reason: str | None, expires_at: datetime | None = None
) -> dict[str, Any]:
    return {
        "user_id": user_id,
        "reason": reason,
        "expires_at": expires_at.isoformat() if expires_at else None,
    }


# ==================== Reports ====================


@router.post("/reports", status_code=201)
async def create_report(
    background_tasks: BackgroundTasks,
    payload: dict[str, Any] = Body(...),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
) -> dict[str, Any]:
    """Report a post, thread or user (rate limited)."""
    data = await validate_with_rate_limit(
        ReportCreate,
        payload,
        "create_report",
        str(user.id),
        cache,
        limits=(settings.rate_limit_report_window, settings.rate_limit_report_max),
    )
    report = await ReportService(db).create_report(user, data)

    await invalidate_after_commit(db, cache, "admin-reports")
    emit_webhook_event(
        background_tasks,
        "report.created",
        {
            "report_id": report.id,
            "target_type": report.target_type,
            "target_id": report.target_id,
            "reason": report.reason,
        },
    )
    return {"success": True, "report": report.to_dict()}


@router.get("/reports")
async def get_reports(
    status: str | None = Query(None, pattern="^(pending|resolved|dismissed)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Reports visible to the caller (moderators see their categories only)."""
    result = await ReportService(db).get_reports(user, status, page, limit)
    result["reports"] = [report.to_dict() for report in result["reports"]]
    return {"success": True, **result}


@router.get("/reports/stats")
async def get_report_stats(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
) -> dict[str, Any]:
    async def load() -> dict[str, int]:
        return await ReportService(db).get_report_stats(user)

    stats = await cache.remember(f"report-stats:{user.id}", ["admin-reports"], load, ttl=300)
    return {"success": True, "stats": stats}


@router.post("/reports/{report_id}/resolve")
async def resolve_report(
    report_id: int,
    data: ResolveReportRequest,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
) -> dict[str, Any]:
    reports = ReportService(db)
    report = await reports.resolve_report(user, report_id, data.action, data.admin_notes)

    await invalidate_after_commit(db, cache, "admin-reports", "get-threads", "forum-stats")
    if data.action == "ban":
        offender_id = await reports.offender_id(report)
        emit_webhook_event(
            background_tasks, "user.banned", _ban_event(offender_id, report.reason)
        )
    return {"success": True, "report": report.to_dict()}


# ==================== Bans ====================


@router.post("/users/{user_id}/ban")
async def ban_user(
    user_id: int,
    data: BanRequest,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    banned = await SecurityService(db).ban_user(user, user_id, data.reason, data.expires_at)
    emit_webhook_event(
        background_tasks,
        "user.banned",
        _ban_event(banned.id, data.reason, banned.ban_expires),
    )
    return {"success": True, "ban": await SecurityService(db).check_user_ban(user_id)}


@router.delete("/users/{user_id}/ban")
async def unban_user(
    user_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    await SecurityService(db).unban_user(user, user_id)
    return {"success": True}


@router.get("/users/{user_id}/ban")
async def check_ban(
    user_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return {"success": True, "ban": await SecurityService(db).check_user_ban(user_id)}


# ==================== Roles ====================


@router.put("/users/{user_id}/role")
async def update_role(
    user_id: int,
    data: RoleRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    target = await RoleService(db).update_user_role(user, user_id, data.role)
    return {"success": True, "user": {"id": target.id, "role": target.effective_role}}


@router.get("/roles/stats")
async def role_stats(
    user: User = Depends(require_role(UserRole.ADMIN.value)),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return {"success": True, "stats": await RoleService(db).get_role_stats()}


# ==================== Category moderators ====================


@router.get("/categories/{category_id}/moderators")
async def category_moderators(
    category_id: int,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    moderators = await RoleService(db).get_category_moderators(category_id)
    return {"success": True, "moderators": moderators}


@router.post("/categories/{category_id}/moderators", status_code=201)
async def assign_moderator(
    category_id: int,
    data: ModeratorRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    await RoleService(db).assign_category_moderator(user, category_id, data.user_id)
    return {"success": True}


@router.delete("/categories/{category_id}/moderators/{user_id}")
async def remove_moderator(
    category_id: int,
    user_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    await RoleService(db).remove_category_moderator(user, category_id, user_id)
    return {"success": True}
