"""
Maintenance Service - cleanup, database housekeeping and exports (admin only).
"""

import csv
import io
import json
from datetime import datetime, timedelta
from typing import Any

from loguru import logger
from sqlalchemy import delete, func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from openforum.core.exceptions import PermissionDeniedError, ValidationError
from openforum.models.forum import Post, Thread
from openforum.models.notification import Notification
from openforum.models.user import User

NOTIFICATION_RETENTION_DAYS = 90
INACTIVE_USER_DAYS = 180


def _require_admin(actor: User) -> None:
    if not actor.is_admin:
        raise PermissionDeniedError()


class MaintenanceService:
    """
    Housekeeping tasks for administrators.

    Usage:
        maintenance = MaintenanceService(db_session)
        stats = await maintenance.perform_maintenance(admin)
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _count(self, query: Any) -> int:
        return await self.db.scalar(query) or 0

    async def perform_maintenance(self, actor: User) -> dict[str, int]:
        """
        Run cleanup tasks.

        Returns:
            deleted_posts: soft-deleted posts on record
            expired_notifications: read notifications removed (older than 90 days)
            inactive_users: accounts older than 180 days without content
            orphaned_content: posts without a thread, removed
        """
        _require_admin(actor)
        now = datetime.utcnow()

        deleted_posts = await self._count(
            select(func.count(Post.id)).where(Post.is_deleted == True)
        )

        expired = await self.db.execute(
            delete(Notification).where(
                Notification.read == True,
                Notification.created_at < now - timedelta(days=NOTIFICATION_RETENTION_DAYS),
            )
        )

        inactive_users = await self._count(
            select(func.count(User.id)).where(
                User.created_at < now - timedelta(days=INACTIVE_USER_DAYS),
                ~select(Post.id).where(Post.author_id == User.id).exists(),
                ~select(Thread.id).where(Thread.author_id == User.id).exists(),
            )
        )

        orphaned_ids = list(
            (
                await self.db.execute(
                    select(Post.id)
                    .outerjoin(Thread, Post.thread_id == Thread.id)
                    .where(Thread.id.is_(None))
                )
            ).scalars()
        )
        if orphaned_ids:
            await self.db.execute(delete(Post).where(Post.id.in_(orphaned_ids)))

        stats = {
            "deleted_posts": deleted_posts,
            "expired_notifications": expired.rowcount or 0,
            "inactive_users": inactive_users,
            "orphaned_content": len(orphaned_ids),
        }
        logger.info(f"Maintenance run by {actor.id}: {stats}")
        return stats

    async def get_maintenance_info(self, actor: User) -> dict[str, int]:
        _require_admin(actor)
        return {
            "total_posts": await self._count(select(func.count(Post.id))),
            "deleted_posts": await self._count(
                select(func.count(Post.id)).where(Post.is_deleted == True)
            ),
            "total_notifications": await self._count(select(func.count(Notification.id))),
            "read_notifications": await self._count(
                select(func.count(Notification.id)).where(Notification.read == True)
            ),
            "total_users": await self._count(select(func.count(User.id))),
        }

    async def optimize_database(self, actor: User) -> str:
        """Run VACUUM (with ANALYZE on PostgreSQL) outside the request transaction."""
        _require_admin(actor)

        engine = self.db.bind
        statement = "VACUUM ANALYZE" if engine.dialect.name == "postgresql" else "VACUUM"
        async with engine.connect() as conn:
            conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
            await conn.execute(text(statement))

        logger.info(f"Database optimized ({statement}) by {actor.id}")
        return "Database optimization completed successfully"

    async def export_data(self, actor: User, format: str = "json") -> str:
        """Export users, threads and posts as JSON or CSV."""
        _require_admin(actor)
        if format not in ("json", "csv"):
            raise ValidationError("Format must be json or csv")

        users = (
            await self.db.execute(
                select(User.id, User.name, User.email, User.created_at, User.role)
            )
        ).mappings().all()
        threads = (
            await self.db.execute(
                select(
                    Thread.id,
                    Thread.title,
                    Thread.slug,
                    Thread.created_at,
                    Thread.author_id,
                    Thread.category_id,
                )
            )
        ).mappings().all()
        posts = (
            await self.db.execute(
                select(Post.id, Post.content, Post.created_at, Post.author_id, Post.thread_id)
            )
        ).mappings().all()

        if format == "json":
            return json.dumps(
                {
                    "export_date": datetime.utcnow().isoformat(),
                    "users": len(users),
                    "threads": len(threads),
                    "posts": len(posts),
                    "data": {
                        "users": [dict(u) for u in users],
                        "threads": [dict(t) for t in threads],
                        "posts": [dict(p) for p in posts],
                    },
                },
                indent=2,
                default=str,
            )

        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(["Type", "ID", "Title/Name", "Content", "Created", "Author"])
        for t in threads:
            writer.writerow(["Thread", t["id"], t["title"], "", t["created_at"], t["author_id"]])
        for p in posts:
            writer.writerow(["Post", p["id"], "", p["content"], p["created_at"], p["author_id"]])
        return buffer.getvalue()
