"""
Response shapes shared by forum, user and search endpoints.
"""

from typing import Any

from openforum.models.forum import Category, Post, Thread
from openforum.models.user import User


def iso(value: Any) -> str | None:
    return value.isoformat() if value else None


def author_summary(user: User | None) -> dict[str, Any] | None:
    return user.to_summary() if user else None


def category_to_dict(category: Category) -> dict[str, Any]:
    return {
        "id": category.id,
        "name": category.name,
        "slug": category.slug,
        "description": category.description,
        "color": category.color,
        "icon_class": category.icon_class,
        "display_order": category.display_order,
        "is_hidden": category.is_hidden,
        "parent_id": category.parent_id,
        "created_at": iso(category.created_at),
    }


def post_to_dict(post: Post, include_votes: bool = False) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": post.id,
        "thread_id": post.thread_id,
        "content": post.content,
        "author": author_summary(post.author),
        "is_edited": post.is_edited,
        "edited_at": iso(post.edited_at),
        "is_deleted": post.is_deleted,
        "is_hidden": post.is_hidden,
        "created_at": iso(post.created_at),
        "updated_at": iso(post.updated_at),
    }
    if include_votes:
        data["votes"] = [{"user_id": v.user_id, "value": v.value} for v in post.votes]
        data["score"] = sum(v.value for v in post.votes)
    return data


def thread_to_dict(thread: Thread, include_tags: bool = True) -> dict[str, Any]:
    """Thread listing shape; relationships must be eagerly loaded."""
    last_post = thread.last_post
    data: dict[str, Any] = {
        "id": thread.id,
        "title": thread.title,
        "slug": thread.slug,
        "category_id": thread.category_id,
        "author": author_summary(thread.author),
        "category": thread.category.to_summary() if thread.category else None,
        "is_pinned": thread.is_pinned,
        "is_locked": thread.is_locked,
        "is_hidden": thread.is_hidden,
        "view_count": thread.view_count,
        "reply_count": thread.reply_count,
        "last_post_at": iso(thread.last_post_at),
        "last_post": (
            {
                "id": last_post.id,
                "author": author_summary(last_post.author),
                "created_at": iso(last_post.created_at),
            }
            if last_post
            else None
        ),
        "created_at": iso(thread.created_at),
        "updated_at": iso(thread.updated_at),
    }
    if include_tags:
        data["tags"] = [tt.tag.to_dict() for tt in thread.tags]
    return data
