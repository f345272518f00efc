"""
Tag Service - thread tags.
"""

from loguru import logger
from slugify import slugify
from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from openforum.core.config import settings
from openforum.core.exceptions import ConflictError, NotFoundError, ValidationError
from openforum.models.forum import Tag, ThreadTag
from openforum.models.user import User
from openforum.modules.moderation.roles import require_permission


class TagService:
    """
    Service for managing tags.

    Usage:
        tags = TagService(db_session)
        tag = await tags.create_tag(admin, "Python")
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_all_tags(self, search: str | None = None, limit: int = 100) -> list[Tag]:
        """Tags ordered by name, optionally matching a name or slug fragment."""
        query = select(Tag)
        if search and search.strip():
            pattern = f"%{search.strip()}%"
            query = query.where(or_(Tag.name.ilike(pattern), Tag.slug.ilike(pattern)))
        query = query.order_by(Tag.name).limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_tag(self, id_or_slug: str) -> Tag:
        """Get tag by numeric id or slug."""
        if id_or_slug.isdigit():
            tag = await self.db.get(Tag, int(id_or_slug))
        else:
            tag = await self.db.scalar(select(Tag).where(Tag.slug == id_or_slug))
        if not tag:
            raise NotFoundError("Tag")
        return tag

    async def _ensure_unique(self, name: str, slug: str, exclude_id: int | None = None) -> None:
        query = select(Tag.id).where(or_(Tag.name == name, Tag.slug == slug))
        if exclude_id is not None:
            query = query.where(Tag.id != exclude_id)
        if await self.db.scalar(query) is not None:
            raise ConflictError("A tag with this name already exists")

    async def create_tag(
        self,
        actor: User,
        name: str,
        description: str | None = None,
        color: str | None = None,
    ) -> Tag:
        """Create a tag; the slug is derived from the name."""
        require_permission(actor, "can_manage_categories")

        name = name.strip()
        slug = slugify(name)
        if not name or not slug:
            raise ValidationError("Tag name is required")
        await self._ensure_unique(name, slug)

        tag = Tag(
            name=name,
            slug=slug,
            description=description,
            color=color or settings.forum_default_tag_color,
        )
        self.db.add(tag)
        await self.db.flush()

        logger.info(f"Tag created: {slug}")
        return tag

    async def update_tag(
        self,
        actor: User,
        tag_id: int,
        name: str | None = None,
        description: str | None = None,
        color: str | None = None,
    ) -> Tag:
        require_permission(actor, "can_manage_categories")

        tag = await self.db.get(Tag, tag_id)
        if not tag:
            raise NotFoundError("Tag")

        if name is not None and name.strip() != tag.name:
            name = name.strip()
            slug = slugify(name)
            if not name or not slug:
                raise ValidationError("Tag name is required")
            await self._ensure_unique(name, slug, exclude_id=tag.id)
            tag.name = name
            tag.slug = slug
        if description is not None:
            tag.description = description
        if color is not None:
            tag.color = color

        await self.db.flush()
        return tag

    async def delete_tag(self, actor: User, tag_id: int) -> None:
        """Delete a tag and detach it from its threads."""
        require_permission(actor, "can_manage_categories")

        tag = await self.db.get(Tag, tag_id)
        if not tag:
            raise NotFoundError("Tag")

        await self.db.execute(delete(ThreadTag).where(ThreadTag.tag_id == tag_id))
        await self.db.delete(tag)
        await self.db.flush()

        logger.info(f"Tag {tag_id} deleted by {actor.id}")
