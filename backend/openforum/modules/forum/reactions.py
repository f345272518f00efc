"""
Reaction Service - toggle reactions on threads and posts.
"""

from typing import Any

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from openforum.core.exceptions import NotFoundError, UserBannedError, ValidationError
from openforum.models.forum import Post, Reaction, ReactionType, Thread
from openforum.models.user import User
from openforum.modules.notifications.service import NotificationService


class ReactionService:
    """
    Service for thread and post reactions.

    A LIKE from someone other than the author moves the author's
    reputation by one and notifies them when added.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def toggle_reaction(
        self,
        user: User,
        type: str,
        entity_type: str,
        entity_id: int,
    ) -> dict[str, Any]:
        """
        Add the reaction if missing, remove it otherwise.

        Returns:
            {"added": bool, "count": reactions of this type on the entity}
        """
        if user.banned:
            raise UserBannedError()
        if type not in {t.value for t in ReactionType}:
            raise ValidationError(f"Invalid reaction type: {type}")

        if entity_type == "thread":
            thread = await self.db.scalar(
                select(Thread)
                .options(selectinload(Thread.category))
                .where(Thread.id == entity_id)
            )
            if not thread:
                raise NotFoundError("Thread")
            author_id = thread.author_id
            target = Reaction.thread_id
            link = f"/categories/{thread.category.slug}/{thread.slug}"
            message = f"{user.name} liked your thread: {thread.title}"
        elif entity_type == "post":
            post = await self.db.scalar(
                select(Post)
                .options(selectinload(Post.thread).selectinload(Thread.category))
                .where(Post.id == entity_id)
            )
            if not post:
                raise NotFoundError("Post")
            author_id = post.author_id
            target = Reaction.post_id
            link = (
                f"/categories/{post.thread.category.slug}/{post.thread.slug}"
                f"#post-{post.id}"
            )
            message = f"{user.name} liked your post in thread: {post.thread.title}"
        else:
            raise ValidationError("Entity type must be thread or post")

        existing = await self.db.scalar(
            select(Reaction).where(
                target == entity_id,
                Reaction.user_id == user.id,
                Reaction.type == type,
            )
        )

        counts_for_reputation = type == ReactionType.LIKE.value and author_id != user.id

        if existing:
            await self.db.delete(existing)
            added = False
        else:
            reaction = Reaction(user_id=user.id, type=type)
            if entity_type == "thread":
                reaction.thread_id = entity_id
            else:
                reaction.post_id = entity_id
            self.db.add(reaction)
            added = True

        if counts_for_reputation:
            await self.db.execute(
                update(User)
                .where(User.id == author_id)
                .values(reputation=User.reputation + (1 if added else -1))
            )
            if added:
                await NotificationService(self.db).create_notification(
                    user_id=author_id,
                    type="LIKE",
                    title="New Like",
                    message=message,
                    link=link,
                    actor_id=user.id,
                    entity_id=entity_id,
                    entity_type=entity_type,
                )

        await self.db.flush()

        count = await self.db.scalar(
            select(func.count(Reaction.id)).where(target == entity_id, Reaction.type == type)
        )
        logger.debug(
            f"Reaction {type} {'added to' if added else 'removed from'} "
            f"{entity_type} {entity_id} by {user.id}"
        )
        return {"added": added, "count": count or 0}
