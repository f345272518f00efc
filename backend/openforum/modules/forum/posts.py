"""
Post Service - replies, edits, soft deletes and votes.
"""

from datetime import datetime

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from openforum.core.exceptions import (
    ForumError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from openforum.models.forum import Category, Post, Thread, ThreadSubscription, Vote
from openforum.models.user import User
from openforum.modules.moderation.roles import can_modify_content
from openforum.modules.notifications.service import NotificationService

DELETED_POST_CONTENT = "[This post has been deleted]"


class PostService:
    """
    Service for managing thread replies.

    Usage:
        posts = PostService(db_session)
        post = await posts.create_post(user, thread_id=1, content="Thanks!")
    """

    def __init__(self, db: AsyncSession) -> None:
        """Initialize post service with database session."""
        self.db = db
        self.notifications = NotificationService(db)

    async def get_post(self, post_id: int) -> Post | None:
        """Get post by ID with author and votes."""
        result = await self.db.execute(
            select(Post)
            .options(selectinload(Post.author), selectinload(Post.votes))
            .where(Post.id == post_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _thread_link(self, thread: Thread) -> str:
        category_slug = await self.db.scalar(
            select(Category.slug).where(Category.id == thread.category_id)
        )
        return f"/categories/{category_slug}/{thread.slug}"

    async def create_post(self, author: User, thread_id: int, content: str) -> Post:
        """
        Reply to a thread.

        Updates the thread's last post and reply count, and notifies the
        thread author and subscribers.
        """
        thread = await self.db.get(Thread, thread_id)
        if not thread:
            raise NotFoundError("Thread")
        if thread.is_locked:
            raise ForumError("Thread is locked")

        now = datetime.utcnow()
        post = Post(
            thread_id=thread_id,
            author_id=author.id,
            content=content,
            created_at=now,
            updated_at=now,
        )
        self.db.add(post)
        await self.db.flush()

        await self.db.execute(
            update(Thread)
            .where(Thread.id == thread_id)
            .values(
                last_post_id=post.id,
                last_post_at=now,
                reply_count=Thread.reply_count + 1,
            )
        )

        link = f"{await self._thread_link(thread)}#post-{post.id}"
        data = {
            "post_id": post.id,
            "thread_id": thread_id,
            "author_id": author.id,
            "thread_slug": thread.slug,
        }

        if thread.author_id != author.id:
            await self.notifications.create_notification(
                user_id=thread.author_id,
                type="new_reply",
                title="New reply",
                message=f"{author.name} replied to \"{thread.title}\"",
                link=link,
                data=data,
                actor_id=author.id,
                entity_id=post.id,
                entity_type="post",
            )

        result = await self.db.execute(
            select(ThreadSubscription.user_id).where(
                ThreadSubscription.thread_id == thread_id,
                ThreadSubscription.user_id.not_in([author.id, thread.author_id]),
            )
        )
        subscriber_ids = list(result.scalars().all())
        if subscriber_ids:
            await self.notifications.notify_many(
                subscriber_ids,
                type="thread_reply",
                title="New reply in a watched thread",
                message=f"{author.name} replied to \"{thread.title}\"",
                link=link,
                data=data,
                actor_id=author.id,
                entity_id=post.id,
                entity_type="post",
            )

        logger.info(f"Post {post.id} created in thread {thread_id} by {author.id}")
        return await self.get_post(post.id)

    async def update_post(self, actor: User, post_id: int, content: str) -> Post:
        """Edit a post's content."""
        post = await self.db.get(Post, post_id)
        if not post:
            raise NotFoundError("Post")

        if not can_modify_content(actor, post.author_id, "can_edit_any_post"):
            raise PermissionDeniedError("Not authorized to update this post")
        if post.is_deleted:
            raise ForumError("Cannot edit a deleted post")

        now = datetime.utcnow()
        post.content = content
        post.is_edited = True
        post.edited_at = now
        post.updated_at = now
        await self.db.flush()

        logger.info(f"Post {post_id} edited by {actor.id}")
        return await self.get_post(post_id)

    async def delete_post(self, actor: User, post_id: int) -> Post:
        """Soft-delete a post and decrement the thread's reply count."""
        post = await self.db.get(Post, post_id)
        if not post:
            raise NotFoundError("Post")

        if not can_modify_content(actor, post.author_id, "can_delete_any_post"):
            raise PermissionDeniedError("Not authorized to delete this post")
        if post.is_deleted:
            return post

        post.is_deleted = True
        post.content = DELETED_POST_CONTENT
        post.updated_at = datetime.utcnow()

        await self.db.execute(
            update(Thread)
            .where(Thread.id == post.thread_id)
            .values(reply_count=Thread.reply_count - 1)
        )
        await self.db.flush()

        logger.info(f"Post {post_id} deleted by {actor.id}")
        return post

    async def vote_post(self, user: User, post_id: int, value: int) -> int:
        """
        Vote on a post.

        Args:
            user: Voter
            post_id: Target post
            value: 1 (upvote), -1 (downvote) or 0 (remove vote)

        Returns:
            New vote score of the post
        """
        if value not in (1, 0, -1):
            raise ValidationError("Vote value must be 1, 0 or -1")

        post = await self.db.get(Post, post_id)
        if not post:
            raise NotFoundError("Post")
        if post.author_id == user.id:
            raise ForumError("Cannot vote on your own post")

        existing = await self.db.scalar(
            select(Vote).where(Vote.post_id == post_id, Vote.user_id == user.id)
        )

        reputation_change = 0
        if existing:
            if value == 0:
                reputation_change = -existing.value
                await self.db.delete(existing)
            elif existing.value != value:
                reputation_change = value - existing.value
                existing.value = value
                existing.updated_at = datetime.utcnow()
        elif value != 0:
            reputation_change = value
            self.db.add(Vote(post_id=post_id, user_id=user.id, value=value))

        if reputation_change:
            await self.db.execute(
                update(User)
                .where(User.id == post.author_id)
                .values(reputation=User.reputation + reputation_change)
            )

        await self.db.flush()

        if value == 1 and reputation_change:
            thread = await self.db.get(Thread, post.thread_id)
            await self.notifications.create_notification(
                user_id=post.author_id,
                type="post_upvote",
                title="Your post was upvoted",
                message=f"{user.name} upvoted your post in \"{thread.title}\"",
                link=f"{await self._thread_link(thread)}#post-{post.id}",
                data={"post_id": post.id, "thread_id": post.thread_id, "voter_id": user.id},
                actor_id=user.id,
                entity_id=post.id,
                entity_type="post",
            )

        score = await self.db.scalar(
            select(func.coalesce(func.sum(Vote.value), 0)).where(Vote.post_id == post_id)
        )
        return int(score or 0)
