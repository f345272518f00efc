"""
Search API Endpoints.
"""

from typing import Any, Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from openforum.core.database import get_db
from openforum.core.exceptions import ForumError
from openforum.modules.search.client import SearchServiceError
from openforum.modules.search.service import SearchService, build_facet_filters

router = APIRouter()


@router.get("/threads")
async def search_threads(
    q: str = Query("", description="Search text"),
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    sort_by: str = Query("recent", pattern="^(recent|views|replies)$"),
    category: str | None = Query(None, description="Category slug"),
    author: str | None = Query(None),
    tags: list[str] | None = Query(None),
    is_pinned: bool | None = Query(None),
    is_locked: bool | None = Query(None),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Hosted thread search, falling back to the database listing."""
    return await SearchService(db).search_threads_with_fallback(
        q,
        page=page,
        per_page=per_page,
        sort_by=sort_by,
        filters={
            "category_slug": category,
            "author_name": author,
            "tags": tags,
            "is_pinned": is_pinned,
            "is_locked": is_locked,
        },
    )


@router.get("/all")
async def search_all(
    q: str = Query(..., min_length=1),
    page: int = Query(0, ge=0, description="0-based page"),
    hits_per_page: int = Query(10, ge=1, le=100),
    category_name: str | None = Query(None),
    tags: list[str] | None = Query(None),
) -> dict[str, Any]:
    """Threads, posts, users, categories and tags in one request."""
    try:
        results = await SearchService().search_all(
            q,
            page=page,
            hits_per_page=hits_per_page,
            facet_filters=build_facet_filters(category_name=category_name, tags=tags),
        )
    except SearchServiceError as e:
        raise ForumError(str(e) or "Search failed") from e
    return {"success": True, **results}


@router.get("/{index}")
async def search_index(
    index: Literal["posts", "users", "categories", "tags"],
    q: str = Query(..., min_length=1),
    page: int = Query(0, ge=0, description="0-based page"),
    hits_per_page: int = Query(10, ge=1, le=100),
) -> dict[str, Any]:
    """Raw hits from a single index."""
    service = SearchService()
    search = {
        "posts": service.search_posts,
        "users": service.search_users,
        "categories": service.search_categories,
        "tags": service.search_tags,
    }[index]
    try:
        result = await search(q, page=page, hits_per_page=hits_per_page)
    except SearchServiceError as e:
        raise ForumError(str(e) or "Search failed") from e
    return {"success": True, "results": result}
