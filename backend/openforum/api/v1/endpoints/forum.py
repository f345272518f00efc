"""
Forum API Endpoints.

Categories, threads, posts, reactions and tags.
"""

from typing import Any

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from openforum.core.cache import CacheService, get_cache, invalidate_after_commit
from openforum.core.config import settings
from openforum.core.database import get_db
from openforum.core.exceptions import NotFoundError, ValidationError
from openforum.models.user import User
from openforum.modules.analytics.service import AnalyticsService
from openforum.modules.auth.dependencies import get_current_user, get_optional_user
from openforum.modules.forum.categories import CategoryService
from openforum.modules.forum.posts import PostService
from openforum.modules.forum.reactions import ReactionService
from openforum.modules.forum.serializers import category_to_dict, post_to_dict, thread_to_dict
from openforum.modules.forum.tags import TagService
from openforum.modules.forum.threads import ThreadService
from openforum.modules.forum.validation import (
    CategoryCreate,
    CategoryUpdate,
    PostCreate,
    ThreadCreate,
    ThreadUpdate,
    is_spam,
    sanitize_content,
    validate_with_rate_limit,
)
from openforum.modules.webhooks.service import emit_webhook_event

router = APIRouter()

THREAD_CACHE_TAGS = ("get-threads", "forum-stats", "user-stats")


# ==================== Schemas ====================


class VoteRequest(BaseModel):
    """1 upvote, -1 downvote, 0 removes the vote."""

    value: int


class ReactionRequest(BaseModel):
    type: str = "LIKE"
    entity_type: str
    entity_id: int


class TagRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    color: str | None = None


def _thread_event(thread: Any) -> dict[str, Any]:
    return {
        "thread_id": thread.id,
        "title": thread.title,
        "slug": thread.slug,
        "category_id": thread.category_id,
        "author_id": thread.author_id,
    }


def _post_event(post: Any) -> dict[str, Any]:
    return {"post_id": post.id, "thread_id": post.thread_id, "author_id": post.author_id}


def _clean_content(content: str) -> str:
    content = sanitize_content(content)
    if is_spam(content):
        raise ValidationError("Content was flagged as spam")
    return content


async def _invalidate_threads(
    db: AsyncSession, cache: CacheService, author_id: int | None = None
) -> None:
    tags = list(THREAD_CACHE_TAGS)
    if author_id is not None:
        tags.append(f"user-stats-{author_id}")
    await invalidate_after_commit(db, cache, *tags)


# ==================== Home & stats ====================


@router.get("")
async def home(
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
) -> dict[str, Any]:
    """Recent and trending threads."""

    async def load() -> dict[str, Any]:
        threads = await ThreadService(db).get_home_page_threads()
        return {key: [thread_to_dict(t) for t in value] for key, value in threads.items()}

    return {"success": True, **await cache.remember("home-threads", ["get-threads"], load)}


@router.get("/stats")
async def forum_stats(
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
) -> dict[str, Any]:
    stats = await cache.remember(
        "forum-stats", ["forum-stats"], AnalyticsService(db).get_forum_stats
    )
    return {"success": True, "stats": stats}


# ==================== Categories ====================


@router.get("/categories")
async def get_categories(db: AsyncSession = Depends(get_db)) -> dict[str, Any]:
    categories = await CategoryService(db).get_categories()
    return {"success": True, "categories": [category_to_dict(c) for c in categories]}


@router.get("/categories/{slug}")
async def get_category(
    slug: str,
    page: int = Query(1, ge=1),
    per_page: int = Query(settings.forum_threads_per_page, ge=1, le=100),
    user: User | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Category with one page of its threads, pinned first."""
    listing = await CategoryService(db).get_category_with_threads(
        slug,
        page=page,
        per_page=per_page,
        include_hidden=bool(user and user.is_moderator),
    )
    return {
        "success": True,
        "category": category_to_dict(listing["category"]),
        "threads": [thread_to_dict(t) for t in listing["threads"]],
        "pagination": listing["pagination"],
    }


@router.post("/categories", status_code=201)
async def create_category(
    data: CategoryCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    category = await CategoryService(db).create_category(user, data)
    return {"success": True, "category": category_to_dict(category)}


@router.patch("/categories/{category_id}")
async def update_category(
    category_id: int,
    data: CategoryUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    category = await CategoryService(db).update_category(user, category_id, data)
    return {"success": True, "category": category_to_dict(category)}


@router.delete("/categories/{category_id}")
async def delete_category(
    category_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    await CategoryService(db).delete_category(user, category_id)
    return {"success": True}


@router.post("/categories/{category_id}/subscription")
async def subscribe_category(
    category_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    await CategoryService(db).subscribe(user.id, category_id)
    return {"success": True, "subscribed": True}


@router.delete("/categories/{category_id}/subscription")
async def unsubscribe_category(
    category_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    await CategoryService(db).unsubscribe(user.id, category_id)
    return {"success": True, "subscribed": False}


# ==================== Threads ====================


@router.get("/threads")
async def get_threads(
    page: int = Query(1, ge=1),
    per_page: int = Query(settings.forum_threads_per_page, ge=1, le=100),
    q: str | None = Query(None, description="Title search"),
    sort_by: str = Query("recent", pattern="^(recent|views|replies)$"),
    category: str | None = Query(None, description="Category slug or id"),
    filter: str | None = Query(None, pattern="^(pinned|locked|unanswered)$"),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    listing = await ThreadService(db).get_all_threads(
        page=page,
        per_page=per_page,
        search_query=q,
        sort_by=sort_by,
        category=category,
        filter=filter,
    )
    return {
        "success": True,
        "threads": [thread_to_dict(t) for t in listing["threads"]],
        "pagination": listing["pagination"],
    }


@router.get("/threads/{slug}")
async def get_thread(
    slug: str,
    page: int = Query(1, ge=1),
    per_page: int = Query(settings.forum_posts_per_page, ge=1, le=100),
    user: User | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Thread with one page of posts. Counts as a view."""
    threads = ThreadService(db)
    listing = await threads.get_thread_with_posts(
        slug,
        page=page,
        per_page=per_page,
        include_hidden=bool(user and user.is_moderator),
    )
    thread = listing["thread"]
    return {
        "success": True,
        "thread": thread_to_dict(thread),
        "posts": [post_to_dict(p, include_votes=True) for p in listing["posts"]],
        "pagination": listing["pagination"],
        "is_subscribed": (
            await threads.is_subscribed(user.id, thread.id) if user else False
        ),
    }


@router.post("/threads", status_code=201)
async def create_thread(
    background_tasks: BackgroundTasks,
    payload: dict[str, Any] = Body(...),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
) -> dict[str, Any]:
    """Create a thread with its opening post (rate limited)."""
    data = await validate_with_rate_limit(
        ThreadCreate,
        payload,
        "create_thread",
        str(user.id),
        cache,
        limits=(settings.rate_limit_thread_window, settings.rate_limit_thread_max),
    )
    thread = await ThreadService(db).create_thread(
        user, data.title, _clean_content(data.content), data.category_id, data.tags
    )

    AnalyticsService.track_user_action(user.id, "thread_created", {"thread_id": thread.id})
    await _invalidate_threads(db, cache, user.id)
    emit_webhook_event(background_tasks, "thread.created", _thread_event(thread))
    return {"success": True, "thread": thread_to_dict(thread)}


@router.patch("/threads/{thread_id}")
async def update_thread(
    thread_id: int,
    data: ThreadUpdate,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
) -> dict[str, Any]:
    thread = await ThreadService(db).update_thread(user, thread_id, data)

    await _invalidate_threads(db, cache)
    emit_webhook_event(background_tasks, "thread.updated", _thread_event(thread))
    return {"success": True, "thread": thread_to_dict(thread)}


@router.delete("/threads/{thread_id}")
async def delete_thread(
    thread_id: int,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
) -> dict[str, Any]:
    thread = await ThreadService(db).delete_thread(user, thread_id)

    await _invalidate_threads(db, cache, thread.author_id)
    emit_webhook_event(background_tasks, "thread.deleted", _thread_event(thread))
    return {"success": True}


@router.get("/threads/{thread_id}/subscription")
async def thread_subscription(
    thread_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return {
        "success": True,
        "subscribed": await ThreadService(db).is_subscribed(user.id, thread_id),
    }


@router.post("/threads/{thread_id}/subscription")
async def subscribe_thread(
    thread_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    await ThreadService(db).subscribe(user.id, thread_id)
    return {"success": True, "subscribed": True}


@router.delete("/threads/{thread_id}/subscription")
async def unsubscribe_thread(
    thread_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    await ThreadService(db).unsubscribe(user.id, thread_id)
    return {"success": True, "subscribed": False}


# ==================== Posts ====================


@router.post("/threads/{thread_id}/posts", status_code=201)
async def create_post(
    thread_id: int,
    background_tasks: BackgroundTasks,
    payload: dict[str, Any] = Body(...),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
) -> dict[str, Any]:
    """Reply to a thread (rate limited)."""
    data = await validate_with_rate_limit(
        PostCreate,
        {**payload, "thread_id": thread_id},
        "create_post",
        str(user.id),
        cache,
        limits=(settings.rate_limit_post_window, settings.rate_limit_post_max),
    )
    post = await PostService(db).create_post(
        user, data.thread_id, _clean_content(data.content)
    )

    AnalyticsService.track_user_action(user.id, "post_created", {"post_id": post.id})
    await _invalidate_threads(db, cache, user.id)
    emit_webhook_event(background_tasks, "post.created", _post_event(post))
    return {"success": True, "post": post_to_dict(post, include_votes=True)}


@router.patch("/posts/{post_id}")
async def update_post(
    post_id: int,
    background_tasks: BackgroundTasks,
    payload: dict[str, Any] = Body(...),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
) -> dict[str, Any]:
    post_service = PostService(db)
    existing = await post_service.get_post(post_id)
    if not existing:
        raise NotFoundError("Post")

    # Same content rules as a new reply
    data = await validate_with_rate_limit(
        PostCreate,
        {**payload, "thread_id": existing.thread_id},
        "update_post",
        str(user.id),
        cache,
    )
    post = await post_service.update_post(user, post_id, _clean_content(data.content))

    emit_webhook_event(background_tasks, "post.updated", _post_event(post))
    return {"success": True, "post": post_to_dict(post)}


@router.delete("/posts/{post_id}")
async def delete_post(
    post_id: int,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
) -> dict[str, Any]:
    post = await PostService(db).delete_post(user, post_id)

    await _invalidate_threads(db, cache, post.author_id)
    emit_webhook_event(background_tasks, "post.deleted", _post_event(post))
    return {"success": True}


@router.post("/posts/{post_id}/vote")
async def vote_post(
    post_id: int,
    data: VoteRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    score = await PostService(db).vote_post(user, post_id, data.value)
    return {"success": True, "score": score}


# ==================== Reactions ====================


@router.post("/reactions")
async def toggle_reaction(
    data: ReactionRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    result = await ReactionService(db).toggle_reaction(
        user, data.type, data.entity_type, data.entity_id
    )
    return {"success": True, **result}


# ==================== Tags ====================


@router.get("/tags")
async def get_tags(
    search: str | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
) -> dict[str, Any]:
    async def load() -> list[dict[str, Any]]:
        return [t.to_dict() for t in await TagService(db).get_all_tags(search, limit)]

    if search:
        tags = await load()
    else:
        tags = await cache.remember(f"tags:{limit}", ["get-tags"], load)
    return {"success": True, "tags": tags}


@router.get("/tags/{id_or_slug}")
async def get_tag(id_or_slug: str, db: AsyncSession = Depends(get_db)) -> dict[str, Any]:
    tag = await TagService(db).get_tag(id_or_slug)
    return {"success": True, "tag": tag.to_dict()}


@router.post("/tags", status_code=201)
async def create_tag(
    data: TagRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
) -> dict[str, Any]:
    tag = await TagService(db).create_tag(user, data.name or "", data.description, data.color)
    await invalidate_after_commit(db, cache, "get-tags")
    return {"success": True, "tag": tag.to_dict()}


@router.patch("/tags/{tag_id}")
async def update_tag(
    tag_id: int,
    data: TagRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
) -> dict[str, Any]:
    tag = await TagService(db).update_tag(
        user, tag_id, name=data.name, description=data.description, color=data.color
    )
    await invalidate_after_commit(db, cache, "get-tags")
    return {"success": True, "tag": tag.to_dict()}


@router.delete("/tags/{tag_id}")
async def delete_tag(
    tag_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
) -> dict[str, Any]:
    await TagService(db).delete_tag(user, tag_id)
    await invalidate_after_commit(db, cache, "get-tags", "get-threads")
    return {"success": True}
