"""
Thread Service - thread lifecycle, listings and subscriptions.
"""

import math
from datetime import datetime, timedelta
from typing import Any

from loguru import logger
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.attributes import set_committed_value

from openforum.core.config import settings
from openforum.core.exceptions import (
    ForumError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from openforum.models.forum import (
    Category,
    CategorySubscription,
    Post,
    Tag,
    Thread,
    ThreadSubscription,
    ThreadTag,
)
from openforum.models.user import User
from openforum.modules.forum.categories import thread_listing_options
from openforum.modules.forum.slugs import unique_slug
from openforum.modules.forum.validation import ThreadUpdate
from openforum.modules.moderation.roles import can_modify_content, permissions_for_role
from openforum.modules.notifications.service import NotificationService

SORT_COLUMNS = {
    "recent": Thread.last_post_at,
    "views": Thread.view_count,
    "replies": Thread.reply_count,
}

MODERATION_FLAGS = ("is_pinned", "is_locked", "is_hidden")


class ThreadService:
    """
    Service for managing forum threads.

    Usage:
        threads = ThreadService(db_session)
        thread = await threads.create_thread(user, "Title", "Body...", category_id=1)
    """

    def __init__(self, db: AsyncSession) -> None:
        """Initialize thread service with database session."""
        self.db = db

    async def get_thread(self, thread_id: int) -> Thread | None:
        """Get thread by ID with listing relationships."""
        result = await self.db.execute(
            select(Thread)
            .options(*thread_listing_options())
            .where(Thread.id == thread_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _resolve_tags(self, tags: list[str]) -> list[Tag]:
        """Resolve tag slugs or ids to tags."""
        ids = [int(t) for t in tags if str(t).isdigit()]
        slugs = [t for t in tags if not str(t).isdigit()]
        result = await self.db.execute(
            select(Tag).where(or_(Tag.id.in_(ids), Tag.slug.in_(slugs)))
        )
        found = list(result.scalars().all())

        known = {str(t.id) for t in found} | {t.slug for t in found}
        missing = [t for t in tags if str(t) not in known]
        if missing:
            raise ValidationError(f"Unknown tags: {', '.join(map(str, missing))}")
        return found

    async def create_thread(
        self,
        author: User,
        title: str,
        content: str,
        category_id: int,
        tags: list[str] | None = None,
    ) -> Thread:
        """
        Create a thread together with its opening post.

        Args:
            author: Thread author
            title: Thread title
            content: Opening post content
            category_id: Target category
            tags: Tag slugs or ids to attach

        Returns:
            Created thread
        """
        category = await self.db.get(Category, category_id)
        if not category:
            raise NotFoundError("Category")
        if category.is_locked and not author.is_moderator:
            raise ForumError("Category is locked")

        tag_rows = await self._resolve_tags(tags) if tags else []
        now = datetime.utcnow()

        thread = Thread(
            category_id=category_id,
            author_id=author.id,
            title=title,
            slug=await unique_slug(self.db, Thread, title),
            created_at=now,
            updated_at=now,
            last_post_at=now,
        )
        self.db.add(thread)
        await self.db.flush()

        first_post = Post(
            thread_id=thread.id,
            author_id=author.id,
            content=content,
            created_at=now,
            updated_at=now,
        )
        self.db.add(first_post)
        await self.db.flush()

        thread.last_post_id = first_post.id
        thread.reply_count = 0
        for tag in tag_rows:
            self.db.add(ThreadTag(thread_id=thread.id, tag_id=tag.id))

        await self._notify_category_subscribers(thread, author)
        await self.db.flush()

        logger.info(f"Thread created: {thread.slug} by {author.id}")
        return await self.get_thread(thread.id)

    async def _notify_category_subscribers(self, thread: Thread, author: User) -> None:
        result = await self.db.execute(
            select(CategorySubscription.user_id).where(
                CategorySubscription.category_id == thread.category_id,
                CategorySubscription.user_id != author.id,
            )
        )
        subscriber_ids = list(result.scalars().all())
        if not subscriber_ids:
            return

        category = await self.db.get(Category, thread.category_id)
        await NotificationService(self.db).notify_many(
            subscriber_ids,
            type="new_thread",
            title="New thread",
            message=f"{author.name} started \"{thread.title}\"",
            link=f"/categories/{category.slug}/{thread.slug}",
            actor_id=author.id,
            entity_id=thread.id,
            entity_type="thread",
        )

    async def update_thread(
        self,
        actor: User,
        thread_id: int,
        data: ThreadUpdate,
    ) -> Thread:
        """
        Update a thread.

        Authors may edit title, body, category and tags, but cannot move the
        thread into a locked category. Pin, lock and hide flags need
        moderation rights.
        """
        thread = await self.db.get(Thread, thread_id)
        if not thread:
            raise NotFoundError("Thread")

        if not can_modify_content(actor, thread.author_id, "can_moderate"):
            raise PermissionDeniedError("Not authorized to update this thread")

        fields = data.model_dump(exclude_unset=True)
        if any(fields.get(flag) is not None for flag in MODERATION_FLAGS):
            if not permissions_for_role(actor.effective_role)["can_moderate"]:
                raise PermissionDeniedError("Not authorized to moderate this thread")

        if fields.get("title") and fields["title"] != thread.title:
            thread.title = fields["title"]
            thread.slug = await unique_slug(
                self.db, Thread, fields["title"], exclude_id=thread.id
            )

        if fields.get("category_id") is not None and fields["category_id"] != thread.category_id:
            category = await self.db.get(Category, fields["category_id"])
            if not category:
                raise NotFoundError("Category")
            if category.is_locked and not actor.is_moderator:
                raise ForumError("Category is locked")
            thread.category_id = fields["category_id"]

        for flag in MODERATION_FLAGS:
            if fields.get(flag) is not None:
                setattr(thread, flag, fields[flag])

        if fields.get("content"):
            first_post = await self.db.scalar(
                select(Post)
                .where(Post.thread_id == thread.id)
                .order_by(Post.created_at, Post.id)
                .limit(1)
            )
            if first_post and first_post.content != fields["content"]:
                first_post.content = fields["content"]
                first_post.is_edited = True
                first_post.edited_at = datetime.utcnow()

        if fields.get("tags") is not None:
            tag_rows = await self._resolve_tags(fields["tags"])
            await self.db.execute(delete(ThreadTag).where(ThreadTag.thread_id == thread.id))
            for tag in tag_rows:
                self.db.add(ThreadTag(thread_id=thread.id, tag_id=tag.id))

        thread.updated_at = datetime.utcnow()
        await self.db.flush()

        logger.info(f"Thread {thread_id} updated by {actor.id}")
        return await self.get_thread(thread_id)

    async def delete_thread(self, actor: User, thread_id: int) -> Thread:
        """
        Delete a thread with its posts, tags, subscriptions and reactions.

        Only the author or an admin may do this.
        """
        thread = await self.db.get(Thread, thread_id)
        if not thread:
            raise NotFoundError("Thread")

        if actor.id != thread.author_id and not actor.is_admin:
            raise PermissionDeniedError("Not authorized to delete this thread")

        await self.db.delete(thread)
        await self.db.flush()

        logger.info(f"Thread {thread_id} deleted by {actor.id}")
        return thread

    async def get_thread_with_posts(
        self,
        slug: str,
        page: int = 1,
        per_page: int | None = None,
        include_hidden: bool = False,
    ) -> dict[str, Any]:
        """
        Get a thread and one page of its posts, oldest first.

        Counts as a view.

        Returns:
            {"thread", "posts", "pagination"}
        """
        per_page = per_page or settings.forum_posts_per_page

        thread = await self.db.scalar(
            select(Thread)
            .options(*thread_listing_options())
            .where(Thread.slug == slug)
        )
        if not thread or (thread.is_hidden and not include_hidden):
            raise NotFoundError("Thread")

        conditions = [Post.thread_id == thread.id]
        if not include_hidden:
            conditions.append(Post.is_hidden == False)

        total = await self.db.scalar(select(func.count(Post.id)).where(*conditions)) or 0

        result = await self.db.execute(
            select(Post)
            .options(selectinload(Post.author), selectinload(Post.votes))
            .where(*conditions)
            .order_by(Post.created_at, Post.id)
            .limit(per_page)
            .offset((page - 1) * per_page)
        )
        posts = list(result.scalars().all())

        await self.increment_view_count(thread.id)
        # Count this view in the response without marking the row dirty
        set_committed_value(thread, "view_count", (thread.view_count or 0) + 1)

        return {
            "thread": thread,
            "posts": posts,
            "pagination": {
                "total": total,
                "page": page,
                "per_page": per_page,
                "total_pages": math.ceil(total / per_page) if total else 0,
            },
        }

    async def increment_view_count(self, thread_id: int) -> None:
        """Increment thread view count."""
        await self.db.execute(
            update(Thread)
            .where(Thread.id == thread_id)
            .values(view_count=Thread.view_count + 1)
            .execution_options(synchronize_session=False)
        )

    async def get_home_page_threads(self) -> dict[str, list[Thread]]:
        """Ten most recently active threads and five trending this week."""
        recent = await self.db.execute(
            select(Thread)
            .options(*thread_listing_options())
            .where(Thread.is_hidden == False)
            .order_by(Thread.last_post_at.desc())
            .limit(10)
        )
        trending = await self.db.execute(
            select(Thread)
            .options(*thread_listing_options())
            .where(
                Thread.is_hidden == False,
                Thread.created_at > datetime.utcnow() - timedelta(days=7),
            )
            .order_by(Thread.view_count.desc())
            .limit(5)
        )
        return {
            "recent_threads": list(recent.scalars().all()),
            "trending_threads": list(trending.scalars().all()),
        }

    async def get_all_threads(
        self,
        page: int = 1,
        per_page: int | None = None,
        search_query: str | None = None,
        sort_by: str = "recent",
        category: str | None = None,
        filter: str | None = None,
    ) -> dict[str, Any]:
        """
        Database thread listing, also the search fallback.

        Args:
            page: 1-based page
            per_page: Page size
            search_query: Case-insensitive title match
            sort_by: recent, views or replies
            category: Category slug or id
            filter: pinned, locked or unanswered

        Returns:
            {"threads", "pagination"}
        """
        per_page = per_page or settings.forum_threads_per_page
        conditions = [Thread.is_hidden == False]

        if search_query and search_query.strip():
            conditions.append(Thread.title.ilike(f"%{search_query.strip()}%"))

        if category:
            if category.isdigit():
                conditions.append(Thread.category_id == int(category))
            else:
                conditions.append(
                    Thread.category_id.in_(
                        select(Category.id).where(Category.slug == category)
                    )
                )

        if filter == "pinned":
            conditions.append(Thread.is_pinned == True)
        elif filter == "locked":
            conditions.append(Thread.is_locked == True)
        elif filter == "unanswered":
            conditions.append(Thread.reply_count == 0)

        sort_column = SORT_COLUMNS.get(sort_by, Thread.last_post_at)

        total = await self.db.scalar(select(func.count(Thread.id)).where(*conditions)) or 0
        result = await self.db.execute(
            select(Thread)
            .options(*thread_listing_options())
            .where(*conditions)
            .order_by(sort_column.desc(), Thread.id.desc())
            .limit(per_page)
            .offset((page - 1) * per_page)
        )

        return {
            "threads": list(result.scalars().all()),
            "pagination": {
                "total": total,
                "page": page,
                "per_page": per_page,
                "total_pages": math.ceil(total / per_page) if total else 0,
            },
        }

    # ==================== Subscriptions ====================

    async def subscribe(self, user_id: int, thread_id: int) -> None:
        """Subscribe a user to a thread. Subscribing twice is a no-op."""
        if not await self.db.get(Thread, thread_id):
            raise NotFoundError("Thread")

        if not await self.is_subscribed(user_id, thread_id):
            self.db.add(ThreadSubscription(thread_id=thread_id, user_id=user_id))
            await self.db.flush()

    async def unsubscribe(self, user_id: int, thread_id: int) -> None:
        if not await self.db.get(Thread, thread_id):
            raise NotFoundError("Thread")

        await self.db.execute(
            delete(ThreadSubscription).where(
                ThreadSubscription.thread_id == thread_id,
                ThreadSubscription.user_id == user_id,
            )
        )

    async def is_subscribed(self, user_id: int, thread_id: int) -> bool:
        existing = await self.db.scalar(
            select(ThreadSubscription.id).where(
                ThreadSubscription.thread_id == thread_id,
                ThreadSubscription.user_id == user_id,
            )
        )
        return existing is not None
