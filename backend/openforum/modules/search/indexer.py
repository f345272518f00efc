"""
Search Indexer - builds and uploads search records from the database.

Hidden or deleted content and banned users are never indexed.
"""

from typing import Any

from loguru import logger
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from openforum.models.forum import Category, Post, Tag, Thread, ThreadTag
from openforum.models.user import User
from openforum.modules.search.client import AlgoliaClient, SearchServiceError
from openforum.modules.search.service import (
    CATEGORIES_INDEX,
    POSTS_INDEX,
    TAGS_INDEX,
    THREADS_INDEX,
    USERS_INDEX,
)

BATCH_SIZE = 1000
DEFAULT_COLOR = "#3498db"
DEFAULT_ICON = "MessageSquare"

_RANKING = ["typo", "geo", "words", "filters", "proximity", "attribute", "exact", "custom"]

INDEX_SETTINGS: dict[str, dict[str, Any]] = {
    THREADS_INDEX: {
        "searchableAttributes": [
            "title", "content", "categoryName", "authorName", "authorUsername", "tags",
        ],
        "attributesForFaceting": ["categoryName", "authorName", "tags", "isPinned", "isLocked"],
        "ranking": _RANKING,
        "customRanking": [
            "desc(isPinned)", "desc(viewCount)", "desc(replyCount)", "desc(lastPostAt)",
        ],
    },
    POSTS_INDEX: {
        "searchableAttributes": [
            "content", "threadTitle", "categoryName", "authorName", "authorUsername",
        ],
        "attributesForFaceting": ["categoryName", "authorName", "threadTitle", "isEdited"],
        "ranking": _RANKING,
        "customRanking": ["desc(createdAt)"],
    },
    USERS_INDEX: {
        "searchableAttributes": ["name", "username", "bio", "location"],
        "attributesForFaceting": ["isVerified", "location"],
        "ranking": _RANKING,
        "customRanking": ["desc(threadCount)", "desc(postCount)", "desc(createdAt)"],
    },
    CATEGORIES_INDEX: {
        "searchableAttributes": ["name", "description"],
        "attributesForFaceting": ["isHidden"],
        "ranking": _RANKING,
        "customRanking": ["asc(order)", "desc(threadCount)", "desc(postCount)"],
    },
    TAGS_INDEX: {
        "searchableAttributes": ["name", "description"],
        "attributesForFaceting": [],
        "ranking": _RANKING,
        "customRanking": ["desc(threadCount)", "desc(createdAt)"],
    },
}


def _iso(value: Any) -> str | None:
    return value.isoformat() if value else None


def _not_banned():
    return or_(User.banned == False, User.banned.is_(None))


def chunked(records: list[dict[str, Any]], size: int = BATCH_SIZE) -> list[list[dict[str, Any]]]:
    return [records[i : i + size] for i in range(0, len(records), size)]


class SearchIndexer:
    """
    Builds search records and pushes them to the hosted index.

    Usage:
        indexer = SearchIndexer(db_session, AlgoliaClient(api_key=admin_key))
        counts = await indexer.build_all()
    """

    def __init__(self, db: AsyncSession, client: AlgoliaClient) -> None:
        self.db = db
        self.client = client

    # ==================== Record builders ====================

    async def build_thread_records(self) -> list[dict[str, Any]]:
        result = await self.db.execute(
            select(Thread)
            .join(User, Thread.author_id == User.id)
            .options(
                selectinload(Thread.author),
                selectinload(Thread.category),
                selectinload(Thread.posts),
                selectinload(Thread.tags).selectinload(ThreadTag.tag),
            )
            .where(Thread.is_hidden == False, _not_banned())
        )

        records = []
        for thread in result.scalars().all():
            first_post = thread.posts[0] if thread.posts else None
            records.append(
                {
                    "objectID": str(thread.id),
                    "title": thread.title,
                    "slug": thread.slug,
                    "content": first_post.content if first_post else "",
                    "categoryId": thread.category_id,
                    "categoryName": thread.category.name,
                    "categorySlug": thread.category.slug,
                    "categoryColor": thread.category.color or DEFAULT_COLOR,
                    "categoryIcon": thread.category.icon_class or DEFAULT_ICON,
                    "authorId": thread.author_id,
                    "authorName": thread.author.name,
                    "authorUsername": thread.author.username or thread.author.email,
                    "isPinned": thread.is_pinned,
                    "isLocked": thread.is_locked,
                    "viewCount": thread.view_count,
                    "replyCount": thread.reply_count,
                    "tags": [tt.tag.name for tt in thread.tags],
                    "createdAt": _iso(thread.created_at),
                    "updatedAt": _iso(thread.updated_at),
                    "lastPostAt": _iso(thread.last_post_at),
                }
            )
        return records

    async def build_post_records(self) -> list[dict[str, Any]]:
        result = await self.db.execute(
            select(Post)
            .join(Thread, Post.thread_id == Thread.id)
            .join(User, Post.author_id == User.id)
            .options(
                selectinload(Post.author),
                selectinload(Post.thread).selectinload(Thread.category),
            )
            .where(
                Post.is_hidden == False,
                Post.is_deleted == False,
                Thread.is_hidden == False,
                _not_banned(),
            )
        )

        return [
            {
                "objectID": str(post.id),
                "content": post.content,
                "threadId": post.thread_id,
                "threadTitle": post.thread.title,
                "threadSlug": post.thread.slug,
                "categoryId": post.thread.category_id,
                "categoryName": post.thread.category.name,
                "authorId": post.author_id,
                "authorName": post.author.name,
                "authorUsername": post.author.username or post.author.email,
                "isEdited": post.is_edited,
                "createdAt": _iso(post.created_at),
                "updatedAt": _iso(post.updated_at),
            }
            for post in result.scalars().all()
        ]

    async def build_user_records(self) -> list[dict[str, Any]]:
        thread_counts = dict(
            (await self.db.execute(
                select(Thread.author_id, func.count(Thread.id)).group_by(Thread.author_id)
            )).all()
        )
        post_counts = dict(
            (await self.db.execute(
                select(Post.author_id, func.count(Post.id)).group_by(Post.author_id)
            )).all()
        )

        result = await self.db.execute(select(User).where(_not_banned()))
        return [
            {
                "objectID": str(user.id),
                "name": user.name,
                "username": user.username or user.email,
                "bio": user.bio,
                "location": user.location,
                "website": user.website,
                "threadCount": thread_counts.get(user.id, 0),
                "postCount": post_counts.get(user.id, 0),
                "isVerified": user.email_verified,
                "createdAt": _iso(user.created_at),
                "lastActiveAt": _iso(user.updated_at),
            }
            for user in result.scalars().all()
        ]

    async def build_category_records(self) -> list[dict[str, Any]]:
        thread_counts = dict(
            (await self.db.execute(
                select(Thread.category_id, func.count(Thread.id)).group_by(Thread.category_id)
            )).all()
        )
        post_counts = dict(
            (await self.db.execute(
                select(Thread.category_id, func.count(Post.id))
                .join(Post, Post.thread_id == Thread.id)
                .group_by(Thread.category_id)
            )).all()
        )

        result = await self.db.execute(select(Category).where(Category.is_hidden == False))
        return [
            {
                "objectID": str(category.id),
                "name": category.name,
                "slug": category.slug,
                "description": category.description,
                "color": category.color or DEFAULT_COLOR,
                "icon": category.icon_class or DEFAULT_ICON,
                "threadCount": thread_counts.get(category.id, 0),
                "postCount": post_counts.get(category.id, 0),
                "isHidden": category.is_hidden,
                "order": category.display_order,
                "createdAt": _iso(category.created_at),
                "updatedAt": _iso(category.updated_at),
            }
            for category in result.scalars().all()
        ]

    async def build_tag_records(self) -> list[dict[str, Any]]:
        thread_counts = dict(
            (await self.db.execute(
                select(ThreadTag.tag_id, func.count(ThreadTag.thread_id)).group_by(ThreadTag.tag_id)
            )).all()
        )

        result = await self.db.execute(select(Tag))
        return [
            {
                "objectID": str(tag.id),
                "name": tag.name,
                "slug": tag.slug,
                "description": tag.description,
                "color": tag.color,
                "threadCount": thread_counts.get(tag.id, 0),
                "createdAt": _iso(tag.created_at),
                "updatedAt": _iso(tag.updated_at),
            }
            for tag in result.scalars().all()
        ]

    # ==================== Upload ====================

    async def upload(self, index_name: str, records: list[dict[str, Any]]) -> int:
        """
        Upload records in batches, then apply the index settings.

        A settings failure is logged; the uploaded records stay in place.
        """
        batches = chunked(records)
        for number, batch in enumerate(batches, start=1):
            await self.client.save_objects(index_name, batch)
            logger.info(f"Uploaded {index_name} batch {number}/{len(batches)}")

        try:
            await self.client.set_settings(index_name, INDEX_SETTINGS[index_name])
        except SearchServiceError as e:
            logger.warning(f"Could not configure {index_name} index settings: {e}")

        logger.info(f"Indexed {len(records)} {index_name}")
        return len(records)

    async def build_all(self) -> dict[str, int]:
        """Rebuild every index. Returns record counts per index."""
        builders = {
            THREADS_INDEX: self.build_thread_records,
            POSTS_INDEX: self.build_post_records,
            USERS_INDEX: self.build_user_records,
            CATEGORIES_INDEX: self.build_category_records,
            TAGS_INDEX: self.build_tag_records,
        }
        counts = {}
        for index_name, build in builders.items():
            counts[index_name] = await self.upload(index_name, await build())
        return counts
