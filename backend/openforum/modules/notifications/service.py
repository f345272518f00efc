"""
Notification Service - in-app notifications for replies, votes and moderation.
"""

import json
import math
from typing import Any

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from openforum.core.exceptions import NotFoundError
from openforum.models.notification import Notification


class NotificationService:
    """
    Create and read user notifications.

    Usage:
        notifications = NotificationService(db_session)
        await notifications.create_notification(user_id, "new_reply", ...)
    """

    def __init__(self, db: AsyncSession) -> None:
        """Initialize notification service with database session."""
        self.db = db

    async def create_notification(
        self,
        user_id: int,
        type: str,
        title: str,
        message: str,
        link: str | None = None,
        data: dict[str, Any] | None = None,
        actor_id: int | None = None,
        entity_id: int | None = None,
        entity_type: str | None = None,
    ) -> Notification:
        """Store a notification for a user."""
        notification = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            link=link,
            data=json.dumps(data) if data else None,
            actor_id=actor_id,
            entity_id=entity_id,
            entity_type=entity_type,
        )
        self.db.add(notification)
        await self.db.flush()

        logger.debug(f"Notification {type} created for user {user_id}")
        return notification

    async def notify_many(self, user_ids: list[int], **kwargs: Any) -> int:
        """Send the same notification to several users."""
        for user_id in dict.fromkeys(user_ids):
            await self.create_notification(user_id=user_id, **kwargs)
        return len(set(user_ids))

    async def get_notifications(
        self,
        user_id: int,
        page: int = 1,
        per_page: int = 20,
    ) -> dict[str, Any]:
        """
        Get notifications for a user, newest first.

        Returns:
            Notifications, unread count and pagination
        """
        total = await self.db.scalar(
            select(func.count(Notification.id)).where(Notification.user_id == user_id)
        ) or 0
        unread = await self.db.scalar(
            select(func.count(Notification.id)).where(
                Notification.user_id == user_id,
                Notification.read == False,
            )
        ) or 0

        result = await self.db.execute(
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(per_page)
            .offset((page - 1) * per_page)
        )
        items = list(result.scalars().all())

        return {
            "notifications": [n.to_dict() for n in items],
            "unread_count": unread,
            "pagination": {
                "total": total,
                "page": page,
                "per_page": per_page,
                "total_pages": math.ceil(total / per_page) if total else 0,
            },
        }

    async def mark_as_read(self, user_id: int, notification_id: int) -> Notification:
        """Mark one of the user's notifications as read."""
        notification = await self.db.scalar(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == user_id,
            )
        )
        if not notification:
            raise NotFoundError("Notification")

        notification.read = True
        await self.db.flush()
        return notification

    async def mark_all_as_read(self, user_id: int) -> int:
        """
        Mark every unread notification of the user as read.

        Returns:
            Number of notifications updated
        """
        result = await self.db.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.read == False)
            .values(read=True)
        )
        return result.rowcount or 0
