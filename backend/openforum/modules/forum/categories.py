"""
Category Service - forum sections, their thread listings and subscriptions.
"""

import math
from typing import Any

from loguru import logger
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from openforum.core.exceptions import ConflictError, NotFoundError
from openforum.models.forum import Category, CategorySubscription, Post, Thread, ThreadTag
from openforum.models.user import User
from openforum.modules.forum.slugs import unique_slug
from openforum.modules.forum.validation import CategoryCreate, CategoryUpdate
from openforum.modules.moderation.roles import require_permission


def thread_listing_options() -> list:
    """Eager loads for the thread listing shape."""
    return [
        selectinload(Thread.author),
        selectinload(Thread.category),
        selectinload(Thread.last_post).selectinload(Post.author),
        selectinload(Thread.tags).selectinload(ThreadTag.tag),
    ]


class CategoryService:
    """
    Service for managing forum categories.

    Usage:
        categories = CategoryService(db_session)
        listing = await categories.get_category_with_threads("general", page=2)
    """

    def __init__(self, db: AsyncSession) -> None:
        """Initialize category service with database session."""
        self.db = db

    async def get_categories(self) -> list[Category]:
        """Get visible categories ordered by display order, then name."""
        query = (
            select(Category)
            .where(Category.is_hidden == False)
            .order_by(Category.display_order, Category.name)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_category(self, slug: str) -> Category | None:
        """Get category by slug."""
        result = await self.db.execute(select(Category).where(Category.slug == slug))
        return result.scalar_one_or_none()

    async def get_category_with_threads(
        self,
        slug: str,
        page: int = 1,
        per_page: int = 20,
        include_hidden: bool = False,
    ) -> dict[str, Any]:
        """
        Get a category with one page of its threads.

        Threads are ordered pinned first, then by latest activity.

        Returns:
            {"category", "threads", "pagination"}
        """
        category = await self.get_category(slug)
        if not category:
            raise NotFoundError("Category")

        conditions = [Thread.category_id == category.id]
        if not include_hidden:
            conditions.append(Thread.is_hidden == False)

        total = await self.db.scalar(
            select(func.count(Thread.id)).where(*conditions)
        ) or 0

        query = (
            select(Thread)
            .options(*thread_listing_options())
            .where(*conditions)
            .order_by(Thread.is_pinned.desc(), Thread.last_post_at.desc())
            .limit(per_page)
            .offset((page - 1) * per_page)
        )
        result = await self.db.execute(query)

        return {
            "category": category,
            "threads": list(result.scalars().all()),
            "pagination": {
                "total": total,
                "page": page,
                "per_page": per_page,
                "total_pages": math.ceil(total / per_page) if total else 0,
            },
        }

    async def create_category(self, actor: User, data: CategoryCreate) -> Category:
        """Create new forum category."""
        require_permission(actor, "can_manage_categories")

        category = Category(
            name=data.name,
            slug=await unique_slug(self.db, Category, data.name, max_length=100),
            description=data.description,
            color=data.color,
            icon_class=data.icon_class,
            display_order=data.display_order or 0,
            is_hidden=bool(data.is_hidden),
            parent_id=data.parent_id,
        )
        self.db.add(category)
        await self.db.flush()

        logger.info(f"Category created: {category.slug} by {actor.id}")
        return category

    async def update_category(
        self, actor: User, category_id: int, data: CategoryUpdate
    ) -> Category:
        """Update category fields; a new name regenerates the slug."""
        require_permission(actor, "can_manage_categories")

        category = await self.db.get(Category, category_id)
        if not category:
            raise NotFoundError("Category")

        fields = data.model_dump(exclude_unset=True)
        if "name" in fields and fields["name"] and fields["name"] != category.name:
            category.slug = await unique_slug(
                self.db, Category, fields["name"], max_length=100, exclude_id=category.id
            )
        for key, value in fields.items():
            if value is not None:
                setattr(category, key, value)

        await self.db.flush()
        return category

    async def delete_category(self, actor: User, category_id: int) -> None:
        """Delete an empty category."""
        require_permission(actor, "can_manage_categories")

        category = await self.db.get(Category, category_id)
        if not category:
            raise NotFoundError("Category")

        thread_count = await self.db.scalar(
            select(func.count(Thread.id)).where(Thread.category_id == category_id)
        )
        if thread_count:
            raise ConflictError(
                "Cannot delete category with existing threads. "
                "Move or delete the threads first."
            )

        await self.db.delete(category)
        await self.db.flush()
        logger.info(f"Category {category_id} deleted by {actor.id}")

    # ==================== Subscriptions ====================

    async def subscribe(self, user_id: int, category_id: int) -> None:
        """Subscribe a user to a category. Subscribing twice is a no-op."""
        if not await self.db.get(Category, category_id):
            raise NotFoundError("Category")

        existing = await self.db.scalar(
            select(CategorySubscription).where(
                CategorySubscription.category_id == category_id,
                CategorySubscription.user_id == user_id,
            )
        )
        if not existing:
            self.db.add(CategorySubscription(category_id=category_id, user_id=user_id))
            await self.db.flush()

    async def unsubscribe(self, user_id: int, category_id: int) -> None:
        await self.db.execute(
            delete(CategorySubscription).where(
                CategorySubscription.category_id == category_id,
                CategorySubscription.user_id == user_id,
            )
        )
