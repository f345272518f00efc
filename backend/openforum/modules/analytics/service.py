"""
Analytics Service - forum statistics and admin dashboards.

All figures are plain SQL aggregates; caching happens at the API layer.
"""

from datetime import datetime, timedelta
from typing import Any

from loguru import logger
from sqlalchemy import distinct, extract, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from openforum.core.exceptions import PermissionDeniedError
from openforum.models.forum import Category, Post, Tag, Thread, ThreadTag, Vote
from openforum.models.user import User


def _require_admin(actor: User) -> None:
    if not actor.is_admin:
        raise PermissionDeniedError()


class AnalyticsService:
    """
    Service for user stats, forum stats and admin analytics.

    Usage:
        analytics = AnalyticsService(db_session)
        stats = await analytics.get_forum_stats()
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _scalar(self, query: Any) -> Any:
        return await self.db.scalar(query) or 0

    # ==================== Stats ====================

    async def get_user_stats(self, user_id: int) -> dict[str, int] | None:
        """Visible threads, visible posts, reputation and upvotes received."""
        reputation = await self.db.scalar(select(User.reputation).where(User.id == user_id))
        if reputation is None:
            return None

        return {
            "thread_count": await self._scalar(
                select(func.count(Thread.id)).where(
                    Thread.author_id == user_id, Thread.is_hidden == False
                )
            ),
            "post_count": await self._scalar(
                select(func.count(Post.id)).where(
                    Post.author_id == user_id,
                    Post.is_deleted == False,
                    Post.is_hidden == False,
                )
            ),
            "reputation": reputation,
            "reactions_received": await self._scalar(
                select(func.count(Vote.id))
                .join(Post, Vote.post_id == Post.id)
                .where(Post.author_id == user_id, Vote.value == 1)
            ),
        }

    async def get_forum_stats(self) -> dict[str, Any]:
        """Visible threads and posts, members and the newest member."""
        newest = await self.db.scalar(
            select(User).order_by(User.created_at.desc(), User.id.desc()).limit(1)
        )
        return {
            "total_threads": await self._scalar(
                select(func.count(Thread.id)).where(Thread.is_hidden == False)
            ),
            "total_posts": await self._scalar(
                select(func.count(Post.id)).where(
                    Post.is_deleted == False, Post.is_hidden == False
                )
            ),
            "total_members": await self._scalar(select(func.count(User.id))),
            "newest_member": (
                {
                    "id": newest.id,
                    "name": newest.name,
                    "username": newest.username,
                    "display_username": newest.display_username,
                }
                if newest
                else None
            ),
        }

    # ==================== Admin analytics ====================

    async def get_analytics(
        self,
        actor: User,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> dict[str, Any]:
        """
        Dashboard analytics for a date range (default: last 30 days).

        Returns:
            Totals, active users, top categories, daily user growth,
            daily thread activity and top contributors
        """
        _require_admin(actor)

        now = datetime.utcnow()
        start_date = start_date or now - timedelta(days=30)
        end_date = end_date or now

        active_users = await self._scalar(
            select(func.count(distinct(Post.author_id))).where(
                Post.created_at >= now - timedelta(days=30)
            )
        )

        thread_count = func.count(Thread.id)
        top_categories = []
        rows = await self.db.execute(
            select(Category.id, Category.name, thread_count.label("thread_count"))
            .outerjoin(Thread, Thread.category_id == Category.id)
            .group_by(Category.id, Category.name)
            .order_by(thread_count.desc(), Category.name)
            .limit(10)
        )
        for row in rows.all():
            post_count = await self._scalar(
                select(func.count(Post.id))
                .join(Thread, Post.thread_id == Thread.id)
                .where(Thread.category_id == row.id)
            )
            top_categories.append(
                {
                    "id": row.id,
                    "name": row.name,
                    "thread_count": row.thread_count,
                    "post_count": post_count,
                }
            )

        top_contributors = []
        rows = await self.db.execute(
            select(User.id, User.name, User.reputation, thread_count.label("thread_count"))
            .outerjoin(Thread, Thread.author_id == User.id)
            .group_by(User.id, User.name, User.reputation)
            .order_by(thread_count.desc(), User.reputation.desc())
            .limit(10)
        )
        for row in rows.all():
            post_count = await self._scalar(
                select(func.count(Post.id)).where(Post.author_id == row.id)
            )
            top_contributors.append(
                {
                    "id": row.id,
                    "name": row.name,
                    "reputation": row.reputation,
                    "thread_count": row.thread_count,
                    "post_count": post_count,
                }
            )

        return {
            "total_users": await self._scalar(select(func.count(User.id))),
            "total_threads": await self._scalar(select(func.count(Thread.id))),
            "total_posts": await self._scalar(select(func.count(Post.id))),
            "active_users": active_users,
            "top_categories": top_categories,
            "user_growth": await self._daily_counts(User.created_at, start_date, end_date),
            "thread_activity": await self._daily_counts(
                Thread.created_at, start_date, end_date
            ),
            "top_contributors": top_contributors,
        }

    async def _daily_counts(
        self, column: Any, start_date: datetime, end_date: datetime
    ) -> list[dict[str, Any]]:
        day = func.date(column)
        rows = await self.db.execute(
            select(day.label("date"), func.count().label("count"))
            .where(column >= start_date, column <= end_date)
            .group_by(day)
            .order_by(day)
        )
        return [{"date": str(r.date), "count": r.count} for r in rows.all()]

    async def get_engagement_metrics(self, actor: User) -> dict[str, Any]:
        """Reply depth, unanswered threads, posting hours and active users."""
        _require_admin(actor)
        now = datetime.utcnow()

        hour = extract("hour", Post.created_at)
        hours = await self.db.execute(
            select(hour.label("hour"), func.count().label("count"))
            .group_by(hour)
            .order_by(func.count().desc())
        )

        async def active_since(days: int) -> int:
            return await self._scalar(
                select(func.count(distinct(Post.author_id))).where(
                    Post.created_at >= now - timedelta(days=days)
                )
            )

        avg_replies = await self.db.scalar(select(func.avg(Thread.reply_count)))
        return {
            "avg_posts_per_thread": float(avg_replies or 0),
            "threads_with_no_replies": await self._scalar(
                select(func.count(Thread.id)).where(Thread.reply_count == 0)
            ),
            "active_hours": [
                {"hour": int(r.hour), "count": r.count} for r in hours.all()
            ],
            "weekly_active_users": await active_since(7),
            "monthly_active_users": await active_since(30),
        }

    async def get_content_metrics(self, actor: User) -> dict[str, Any]:
        """Average post length, most used tags and threads per weekday."""
        _require_admin(actor)

        avg_length = await self.db.scalar(select(func.avg(func.length(Post.content))))

        usage = func.count(ThreadTag.thread_id)
        tags = await self.db.execute(
            select(Tag.name, usage.label("count"))
            .join(ThreadTag, ThreadTag.tag_id == Tag.id)
            .group_by(Tag.id, Tag.name)
            .order_by(usage.desc(), Tag.name)
            .limit(10)
        )

        dow = extract("dow", Thread.created_at)
        days = await self.db.execute(
            select(dow.label("day_of_week"), func.count().label("count"))
            .group_by(dow)
            .order_by(dow)
        )

        return {
            "avg_post_length": float(avg_length or 0),
            "most_used_tags": [{"name": r.name, "count": r.count} for r in tags.all()],
            "content_by_day": [
                {"day_of_week": int(r.day_of_week), "count": r.count} for r in days.all()
            ],
        }

    @staticmethod
    def track_user_action(
        user_id: int | None, action: str, metadata: dict[str, Any] | None = None
    ) -> bool:
        """Record a user action in the log. Anonymous actions are ignored."""
        if user_id is None:
            return False
        logger.info(
            f"User action tracked: user={user_id} action={action} metadata={metadata or {}}"
        )
        return True
