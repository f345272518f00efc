"""
Notification API Endpoints.
"""

from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from openforum.core.database import get_db
from openforum.models.user import User
from openforum.modules.auth.dependencies import get_current_user
from openforum.modules.notifications.service import NotificationService

router = APIRouter()


@router.get("")
async def get_notifications(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Newest first, with the unread count."""
    result = await NotificationService(db).get_notifications(user.id, page, per_page)
    return {"success": True, **result}


@router.post("/{notification_id}/read")
async def mark_as_read(
    notification_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    notification = await NotificationService(db).mark_as_read(user.id, notification_id)
    return {"success": True, "notification": notification.to_dict()}


@router.post("/read-all")
async def mark_all_as_read(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    updated = await NotificationService(db).mark_all_as_read(user.id)
    return {"success": True, "updated": updated}
