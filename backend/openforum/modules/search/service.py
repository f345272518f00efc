"""
Search Service - hosted thread search with a database fallback.
"""

import math
from typing import Any

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from openforum.modules.forum.categories import CategoryService
from openforum.modules.forum.serializers import thread_to_dict
from openforum.modules.forum.threads import ThreadService
from openforum.modules.search.client import AlgoliaClient, SearchServiceError

THREADS_INDEX = "threads"
POSTS_INDEX = "posts"
USERS_INDEX = "users"
CATEGORIES_INDEX = "categories"
TAGS_INDEX = "tags"

# Replica indices carrying a fixed sort order
THREAD_SORT_INDICES = {
    "views": f"{THREADS_INDEX}_viewCount_desc",
    "replies": f"{THREADS_INDEX}_replyCount_desc",
}


def build_facet_filters(
    category_name: str | None = None,
    author_name: str | None = None,
    tags: list[str] | None = None,
    is_pinned: bool | None = None,
    is_locked: bool | None = None,
) -> list[list[str]]:
    """
    Build facet filters. Inner lists are OR-ed, outer list AND-ed.

    Example:
        >>> build_facet_filters(category_name="General", tags=["a", "b"])
        [['categoryName:General'], ['tags:a', 'tags:b']]
    """
    filters: list[list[str]] = []

    if category_name:
        filters.append([f"categoryName:{category_name}"])
    if author_name:
        filters.append([f"authorName:{author_name}"])
    if tags:
        filters.append([f"tags:{tag}" for tag in tags])
    if is_pinned is not None:
        filters.append([f"isPinned:{str(is_pinned).lower()}"])
    if is_locked is not None:
        filters.append([f"isLocked:{str(is_locked).lower()}"])

    return filters


def thread_index_for(sort_by: str | None) -> str:
    return THREAD_SORT_INDICES.get(sort_by or "recent", THREADS_INDEX)


def hit_to_thread(hit: dict[str, Any]) -> dict[str, Any]:
    """Convert a thread record to the thread listing shape."""
    return {
        "id": int(hit["objectID"]) if str(hit["objectID"]).isdigit() else hit["objectID"],
        "title": hit.get("title"),
        "slug": hit.get("slug"),
        "category_id": hit.get("categoryId"),
        "author": {
            "id": hit.get("authorId"),
            "name": hit.get("authorName"),
            "username": hit.get("authorUsername"),
            "display_username": None,
            "image": None,
        },
        "category": {
            "id": hit.get("categoryId"),
            "name": hit.get("categoryName"),
            "slug": hit.get("categorySlug"),
            "color": hit.get("categoryColor"),
            "icon_class": hit.get("categoryIcon"),
        },
        "is_pinned": hit.get("isPinned", False),
        "is_locked": hit.get("isLocked", False),
        "is_hidden": False,
        "view_count": hit.get("viewCount", 0),
        "reply_count": hit.get("replyCount", 0),
        "last_post_at": hit.get("lastPostAt"),
        "last_post": None,
        "created_at": hit.get("createdAt"),
        "updated_at": hit.get("updatedAt"),
        "tags": [{"name": name} for name in hit.get("tags", [])],
    }


def _empty_result(per_page: int, error: str | None = None) -> dict[str, Any]:
    result: dict[str, Any] = {
        "success": error is None,
        "threads": [],
        "pagination": {"total": 0, "page": 1, "per_page": per_page, "total_pages": 0},
    }
    if error is not None:
        result["error"] = error
    return result


class SearchService:
    """
    Service for hosted search queries.

    Usage:
        search = SearchService(db_session)
        result = await search.search_threads_with_fallback("python", page=1)
    """

    def __init__(self, db: AsyncSession | None = None, client: AlgoliaClient | None = None) -> None:
        """Initialize search service with database session and search client."""
        self.db = db
        self.client = client or AlgoliaClient()

    @staticmethod
    def _request(
        index_name: str,
        query: str,
        page: int = 0,
        hits_per_page: int = 10,
        filters: str | None = None,
        facet_filters: list[list[str]] | None = None,
    ) -> dict[str, Any]:
        return {
            "indexName": index_name,
            "query": query,
            "page": page,
            "hitsPerPage": hits_per_page,
            "filters": filters,
            "facetFilters": facet_filters or None,
        }

    async def _search_index(self, index_name: str, query: str, **options: Any) -> dict[str, Any]:
        results = await self.client.multiple_queries([self._request(index_name, query, **options)])
        return results[0]

    # ==================== Single index ====================

    async def search_threads(
        self, query: str, sort_by: str | None = None, **options: Any
    ) -> dict[str, Any]:
        """Search threads; sort_by picks the views/replies replica."""
        return await self._search_index(thread_index_for(sort_by), query, **options)

    async def search_posts(self, query: str, **options: Any) -> dict[str, Any]:
        return await self._search_index(POSTS_INDEX, query, **options)

    async def search_users(self, query: str, **options: Any) -> dict[str, Any]:
        return await self._search_index(USERS_INDEX, query, **options)

    async def search_categories(self, query: str, **options: Any) -> dict[str, Any]:
        return await self._search_index(CATEGORIES_INDEX, query, **options)

    async def search_tags(self, query: str, **options: Any) -> dict[str, Any]:
        return await self._search_index(TAGS_INDEX, query, **options)

    async def search_all(
        self,
        query: str,
        page: int = 0,
        hits_per_page: int = 10,
        filters: str | None = None,
        facet_filters: list[list[str]] | None = None,
    ) -> dict[str, Any]:
        """
        Search every index in one request.

        Threads get the full page size, posts half of it and
        users, categories and tags a quarter each (rounded up).
        """
        half = math.ceil(hits_per_page / 2)
        quarter = math.ceil(hits_per_page / 4)
        sizes = [
            (THREADS_INDEX, hits_per_page),
            (POSTS_INDEX, half),
            (USERS_INDEX, quarter),
            (CATEGORIES_INDEX, quarter),
            (TAGS_INDEX, quarter),
        ]
        results = await self.client.multiple_queries(
            [
                self._request(index_name, query, page, size, filters, facet_filters)
                for index_name, size in sizes
            ]
        )
        return {
            "threads": results[0],
            "posts": results[1],
            "users": results[2],
            "categories": results[3],
            "tags": results[4],
        }

    # ==================== Forum search ====================

    async def search_forum_threads(
        self,
        query: str,
        page: int = 1,
        per_page: int = 10,
        sort_by: str = "recent",
        filters: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Thread search with 1-based paging, in the thread listing shape.

        Args:
            query: Search text (blank returns an empty result)
            page: 1-based page
            per_page: Hits per page
            sort_by: recent, views or replies
            filters: category_slug, author_name, tags, is_pinned, is_locked

        Returns:
            {"success", "threads", "pagination", "processing_time"?, "error"?}
        """
        if not query or not query.strip():
            return _empty_result(per_page)

        filters = filters or {}
        try:
            category_name = None
            if filters.get("category_slug") and self.db is not None:
                category = await CategoryService(self.db).get_category(filters["category_slug"])
                if category:
                    category_name = category.name

            facet_filters = build_facet_filters(
                category_name=category_name,
                author_name=filters.get("author_name"),
                tags=filters.get("tags"),
                is_pinned=filters.get("is_pinned"),
                is_locked=filters.get("is_locked"),
            )

            results = await self.search_threads(
                query.strip(),
                sort_by=sort_by,
                page=page - 1,
                hits_per_page=per_page,
                facet_filters=facet_filters,
            )
        except SearchServiceError as e:
            logger.warning(f"Thread search failed: {e}")
            return _empty_result(per_page, error=str(e) or "Search failed")

        return {
            "success": True,
            "threads": [hit_to_thread(hit) for hit in results.get("hits", [])],
            "pagination": {
                "total": results.get("nbHits", 0),
                "page": results.get("page", 0) + 1,
                "per_page": results.get("hitsPerPage", per_page),
                "total_pages": results.get("nbPages", 0),
            },
            "processing_time": results.get("processingTimeMS"),
        }

    async def search_threads_with_fallback(
        self,
        query: str,
        page: int = 1,
        per_page: int = 10,
        sort_by: str = "recent",
        filters: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Hosted search first, database listing when it fails."""
        result = await self.search_forum_threads(query, page, per_page, sort_by, filters)
        if result["success"] or self.db is None:
            return result

        logger.info("Falling back to database search")
        filters = filters or {}
        listing_filter = None
        if filters.get("is_pinned"):
            listing_filter = "pinned"
        elif filters.get("is_locked"):
            listing_filter = "locked"

        listing = await ThreadService(self.db).get_all_threads(
            page=page,
            per_page=per_page,
            search_query=query,
            sort_by=sort_by,
            category=filters.get("category_slug"),
            filter=listing_filter,
        )
        return {
            "success": True,
            "threads": [thread_to_dict(t) for t in listing["threads"]],
            "pagination": listing["pagination"],
        }
