"""
User Service - public profiles, profile edits and the member directory.
"""

import json
import math
from datetime import datetime
from typing import Any

from loguru import logger
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from openforum.core.exceptions import NotFoundError
from openforum.models.forum import Post, Thread, Vote
from openforum.models.user import User
from openforum.modules.forum.validation import ProfileUpdate

MEMBER_SORTS = {
    "newest": User.created_at.desc(),
    "oldest": User.created_at.asc(),
    "reputation": User.reputation.desc(),
    "name": User.name.asc(),
}


def member_to_dict(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "name": user.name,
        "username": user.username,
        "display_username": user.display_username,
        "image": user.image,
        "bio": user.bio,
        "reputation": user.reputation,
        "role": user.effective_role,
        "created_at": user.created_at.isoformat(),
    }


class UserService:
    """
    Service for user profiles.

    Usage:
        users = UserService(db_session)
        profile = await users.get_user_profile(42)
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _upvotes(self, post_id: int) -> int:
        return await self.db.scalar(
            select(func.count(Vote.id)).where(Vote.post_id == post_id, Vote.value == 1)
        ) or 0

    async def get_user_profile(self, user_id: int) -> dict[str, Any]:
        """
        Public profile with content counts and recent activity.

        Recent threads carry their post count and the likes of their
        opening post; recent posts carry their likes.
        """
        user = await self.db.get(User, user_id)
        if not user:
            raise NotFoundError("User")

        thread_count = await self.db.scalar(
            select(func.count(Thread.id)).where(Thread.author_id == user_id)
        )
        post_count = await self.db.scalar(
            select(func.count(Post.id)).where(Post.author_id == user_id)
        )

        threads = (
            await self.db.execute(
                select(Thread)
                .options(selectinload(Thread.category))
                .where(Thread.author_id == user_id)
                .order_by(Thread.created_at.desc(), Thread.id.desc())
                .limit(5)
            )
        ).scalars().all()

        recent_threads = []
        for thread in threads:
            posts_in_thread = await self.db.scalar(
                select(func.count(Post.id)).where(Post.thread_id == thread.id)
            )
            first_post_id = await self.db.scalar(
                select(Post.id)
                .where(Post.thread_id == thread.id)
                .order_by(Post.created_at, Post.id)
                .limit(1)
            )
            recent_threads.append(
                {
                    "id": thread.id,
                    "title": thread.title,
                    "slug": thread.slug,
                    "category": thread.category.to_summary(),
                    "is_pinned": thread.is_pinned,
                    "is_locked": thread.is_locked,
                    "view_count": thread.view_count,
                    "reply_count": thread.reply_count,
                    "created_at": thread.created_at.isoformat(),
                    "updated_at": thread.updated_at.isoformat(),
                    "post_count": posts_in_thread or 0,
                    "like_count": await self._upvotes(first_post_id) if first_post_id else 0,
                }
            )

        posts = (
            await self.db.execute(
                select(Post)
                .options(selectinload(Post.thread).selectinload(Thread.category))
                .where(Post.author_id == user_id)
                .order_by(Post.created_at.desc(), Post.id.desc())
                .limit(5)
            )
        ).scalars().all()

        recent_posts = [
            {
                "id": post.id,
                "content": post.content,
                "created_at": post.created_at.isoformat(),
                "updated_at": post.updated_at.isoformat(),
                "thread": {
                    "id": post.thread.id,
                    "title": post.thread.title,
                    "slug": post.thread.slug,
                    "category": post.thread.category.to_summary(),
                },
                "like_count": await self._upvotes(post.id),
            }
            for post in posts
        ]

        return {
            **member_to_dict(user),
            "signature": user.signature,
            "website": user.website,
            "location": user.location,
            "thread_count": thread_count or 0,
            "post_count": post_count or 0,
            "threads": recent_threads,
            "posts": recent_posts,
        }

    async def update_user_profile(self, user: User, data: ProfileUpdate) -> User:
        """Apply only the provided profile fields."""
        fields = {
            key: value
            for key, value in data.model_dump(exclude_unset=True).items()
            if value is not None
        }
        for key, value in fields.items():
            setattr(user, key, value)

        user.profile_updated_at = datetime.utcnow()
        await self.db.flush()

        logger.info(f"Profile updated for user {user.id}: {sorted(fields)}")
        return user

    async def mark_profile_setup_seen(self, user: User) -> None:
        metadata = user.user_metadata
        metadata["profileSetupSeen"] = True
        user.metadata_json = json.dumps(metadata)
        await self.db.flush()

    @staticmethod
    def check_profile_completion(user: User) -> dict[str, bool]:
        """A profile is complete once it has a bio and an image."""
        return {
            "is_complete": bool(user.bio and user.image),
            "has_seen_setup": bool(user.user_metadata.get("profileSetupSeen")),
        }

    async def get_forum_members(
        self,
        page: int = 1,
        search: str = "",
        sort: str = "newest",
        limit: int = 20,
    ) -> dict[str, Any]:
        """Member directory with name search and sorting."""
        conditions = []
        if search:
            pattern = f"%{search}%"
            conditions.append(
                or_(
                    User.name.ilike(pattern),
                    User.username.ilike(pattern),
                    User.display_username.ilike(pattern),
                )
            )

        total = await self.db.scalar(select(func.count(User.id)).where(*conditions)) or 0
        result = await self.db.execute(
            select(User)
            .where(*conditions)
            .order_by(MEMBER_SORTS.get(sort, MEMBER_SORTS["newest"]), User.id)
            .limit(limit)
            .offset((page - 1) * limit)
        )
        total_pages = math.ceil(total / limit) if total else 0

        return {
            "members": [member_to_dict(u) for u in result.scalars().all()],
            "pagination": {
                "current_page": page,
                "total_pages": total_pages,
                "total_items": total,
                "has_next_page": page < total_pages,
                "has_prev_page": page > 1,
            },
        }
