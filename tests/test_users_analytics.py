"""
Tests for profiles, the member directory and forum analytics.
"""

import pytest

from openforum.core.exceptions import NotFoundError, PermissionDeniedError
from openforum.models.forum import Post, Tag, ThreadTag, Vote
from openforum.modules.analytics.service import AnalyticsService
from openforum.modules.forum.validation import ProfileUpdate
from openforum.modules.users.service import UserService


class TestUserProfile:
    """Tests for public profiles and profile edits."""

    async def test_profile_with_activity(self, db, user, make_user, make_thread):
        thread = await make_thread(user, "Profile thread")
        voter = await make_user()
        db.add(Vote(post_id=thread.last_post_id, user_id=voter.id, value=1))
        await db.commit()

        profile = await UserService(db).get_user_profile(user.id)

        assert profile["thread_count"] == 1
        assert profile["post_count"] == 1
        assert profile["threads"][0]["title"] == "Profile thread"
        assert profile["threads"][0]["post_count"] == 1
        assert profile["threads"][0]["like_count"] == 1
        assert profile["posts"][0]["like_count"] == 1
        assert profile["posts"][0]["thread"]["category"]["slug"] == "general"
        assert "email" not in profile

    async def test_unknown_user(self, db):
        with pytest.raises(NotFoundError, match="User not found"):
            await UserService(db).get_user_profile(404)

    async def test_update_only_provided_fields(self, db, user):
        updated = await UserService(db).update_user_profile(
            user, ProfileUpdate(bio="Writes compilers", location=None)
        )

        assert updated.bio == "Writes compilers"
        assert updated.name == "User 1"
        assert updated.location is None
        assert updated.profile_updated_at is not None

    async def test_profile_completion(self, db, user):
        users = UserService(db)
        assert users.check_profile_completion(user) == {
            "is_complete": False,
            "has_seen_setup": False,
        }

        await users.mark_profile_setup_seen(user)
        user.bio = "Hi"
        user.image = "https://example.com/me.png"

        assert users.check_profile_completion(user) == {
            "is_complete": True,
            "has_seen_setup": True,
        }


class TestMembers:
    """Tests for the member directory."""

    async def test_search_and_sort(self, db, make_user):
        await make_user(name="Charlie")
        await make_user(name="alice")
        await make_user(name="Bob", reputation=10)

        result = await UserService(db).get_forum_members(sort="name")
        assert [m["name"] for m in result["members"]] == ["Bob", "Charlie", "alice"]

        result = await UserService(db).get_forum_members(search="ALI")
        assert [m["name"] for m in result["members"]] == ["alice"]

        result = await UserService(db).get_forum_members(sort="reputation")
        assert result["members"][0]["name"] == "Bob"

    async def test_pagination(self, db, make_user):
        for _ in range(3):
            await make_user()

        result = await UserService(db).get_forum_members(page=2, limit=2)
        assert len(result["members"]) == 1
        assert result["pagination"] == {
            "current_page": 2,
            "total_pages": 2,
            "total_items": 3,
            "has_next_page": False,
            "has_prev_page": True,
        }


class TestStats:
    """Tests for user and forum stats."""

    async def test_user_stats(self, db, user, make_user, make_thread):
        await make_thread(user, "Visible thread")
        hidden = await make_thread(user, "Hidden thread", is_hidden=True)
        db.add(Post(thread_id=hidden.id, author_id=user.id, content="gone", is_deleted=True))
        voter = await make_user()
        db.add(Vote(post_id=hidden.last_post_id, user_id=voter.id, value=1))
        await db.commit()

        stats = await AnalyticsService(db).get_user_stats(user.id)

        assert stats == {
            "thread_count": 1,
            "post_count": 2,
            "reputation": 0,
            "reactions_received": 1,
        }

    async def test_unknown_user_stats(self, db):
        assert await AnalyticsService(db).get_user_stats(404) is None

    async def test_forum_stats(self, db, user, make_user, make_thread):
        await make_thread(user)
        newest = await make_user(name="Newcomer")

        stats = await AnalyticsService(db).get_forum_stats()

        assert stats["total_threads"] == 1
        assert stats["total_posts"] == 1
        assert stats["total_members"] == 2
        assert stats["newest_member"]["id"] == newest.id


class TestAdminAnalytics:
    """Tests for the admin dashboards."""

    async def test_admin_only(self, db, moderator):
        analytics = AnalyticsService(db)
        with pytest.raises(PermissionDeniedError):
            await analytics.get_analytics(moderator)
        with pytest.raises(PermissionDeniedError):
            await analytics.get_engagement_metrics(moderator)
        with pytest.raises(PermissionDeniedError):
            await analytics.get_content_metrics(moderator)

    async def test_analytics(self, db, admin, user, make_thread):
        await make_thread(user, "First thread")
        await make_thread(user, "Second thread")

        data = await AnalyticsService(db).get_analytics(admin)

        assert data["total_users"] == 2
        assert data["total_threads"] == 2
        assert data["total_posts"] == 2
        assert data["active_users"] == 1
        assert data["top_categories"] == [
            {"id": 1, "name": "General Discussion", "thread_count": 2, "post_count": 2}
        ]
        assert sum(day["count"] for day in data["thread_activity"]) == 2
        assert data["top_contributors"][0]["id"] == user.id

    async def test_engagement(self, db, admin, user, make_thread):
        await make_thread(user, "Quiet thread")
        await make_thread(user, "Busy thread", reply_count=4)

        metrics = await AnalyticsService(db).get_engagement_metrics(admin)

        assert metrics["avg_posts_per_thread"] == 2.0
        assert metrics["threads_with_no_replies"] == 1
        assert sum(h["count"] for h in metrics["active_hours"]) == 2
        assert metrics["weekly_active_users"] == 1

    async def test_content(self, db, admin, user, make_thread):
        thread = await make_thread(user)
        tag = Tag(name="Python", slug="python")
        db.add(tag)
        await db.flush()
        db.add(ThreadTag(thread_id=thread.id, tag_id=tag.id))
        await db.commit()

        metrics = await AnalyticsService(db).get_content_metrics(admin)

        assert metrics["avg_post_length"] == float(len("Opening post content"))
        assert metrics["most_used_tags"] == [{"name": "Python", "count": 1}]
        assert sum(d["count"] for d in metrics["content_by_day"]) == 1

    def test_track_user_action(self):
        assert AnalyticsService.track_user_action(1, "thread_created", {"thread_id": 2})
        assert not AnalyticsService.track_user_action(None, "thread_created")
