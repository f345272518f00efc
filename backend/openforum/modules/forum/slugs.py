"""
Unique slug generation.
"""

from typing import Any

from slugify import slugify
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession


async def unique_slug(
    db: AsyncSession,
    model: Any,
    text: str,
    max_length: int = 200,
    exclude_id: int | None = None,
) -> str:
    """
    Slugify text and suffix a counter until no other row uses it.

    Args:
        db: Database session
        model: Mapped class with `slug` and `id` columns
        text: Source text (title, name)
        max_length: Base slug length limit
        exclude_id: Row allowed to keep its own slug (updates)
    """
    base_slug = slugify(text)[:max_length] or "item"
    slug = base_slug

    counter = 1
    while True:
        query = select(model.id).where(model.slug == slug)
        if exclude_id is not None:
            query = query.where(model.id != exclude_id)
        if (await db.execute(query)).scalar_one_or_none() is None:
            return slug
        slug = f"{base_slug}-{counter}"
        counter += 1
