"""
End-to-end tests for the HTTP API.
"""

from sqlalchemy import func, select

from openforum.core.config import settings
from openforum.models.forum import Thread


class TestSystem:
    """Tests for the system endpoints and error bodies."""

    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "version": settings.app_version}

    async def test_missing_token(self, client):
        response = await client.get("/api/v1/auth/me")
        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Not authenticated"}

    async def test_invalid_token(self, client):
        response = await client.get(
            "/api/v1/auth/me", headers={"Authorization": "Bearer not-a-token"}
        )
        assert response.status_code == 401

    async def test_banned_user(self, client, make_user, auth_headers):
        banned = await make_user(banned=True, ban_reason="spam")
        response = await client.get("/api/v1/auth/me", headers=auth_headers(banned))

        assert response.status_code == 403
        assert response.json()["error"] == "Your account has been banned"


class TestAuthApi:
    """Tests for registration and sign-in over HTTP."""

    async def test_register_sign_in_me(self, client):
        response = await client.post(
            "/api/v1/auth/register",
            json={"email": "Grace@Example.com", "password": "password123", "name": "Grace"},
        )
        assert response.status_code == 201
        assert response.json()["user"]["email"] == "grace@example.com"

        response = await client.post(
            "/api/v1/auth/sign-in",
            json={"identifier": "grace@example.com", "password": "password123"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["token_type"] == "bearer"

        response = await client.get(
            "/api/v1/auth/me", headers={"Authorization": f"Bearer {body['token']}"}
        )
        assert response.json()["user"]["name"] == "Grace"

    async def test_wrong_password(self, client, user):
        response = await client.post(
            "/api/v1/auth/sign-in",
            json={"identifier": user.email, "password": "wrong-password"},
        )
        assert response.status_code == 401
        assert response.json()["success"] is False

    async def test_anonymous_permissions(self, client):
        response = await client.get("/api/v1/auth/permissions")
        permissions = response.json()["permissions"]
        assert permissions
        assert not any(permissions.values())

    async def test_code_checks_rate_limited(self, client, user, monkeypatch):
        monkeypatch.setattr(settings, "rate_limit_otp_max", 2)
        payload = {"email": user.email, "otp": "000000", "password": "newpassword1"}

        statuses = [
            (await client.post("/api/v1/auth/reset-password", json=payload)).status_code
            for _ in range(3)
        ]
        assert statuses == [422, 422, 429]

        # Verification shares the per-email budget
        response = await client.post(
            "/api/v1/auth/verify-email", json={"email": user.email.upper(), "otp": "000000"}
        )
        assert response.status_code == 429
        assert response.json()["reset_at"]


class TestThreadsApi:
    """Tests for creating and reading threads."""

    def payload(self, category, **fields):
        return {
            "title": "Packaging a FastAPI app",
            "content": "What is the cleanest way to ship this?",
            "category_id": category.id,
            **fields,
        }

    async def test_create_and_read(self, client, user, category, auth_headers):
        response = await client.post(
            "/api/v1/forum/threads", json=self.payload(category), headers=auth_headers(user)
        )
        assert response.status_code == 201
        thread = response.json()["thread"]
        assert thread["slug"] == "packaging-a-fastapi-app"
        assert thread["author"]["id"] == user.id

        response = await client.get(f"/api/v1/forum/threads/{thread['slug']}")
        body = response.json()
        assert body["thread"]["id"] == thread["id"]
        assert [p["content"] for p in body["posts"]] == [
            "What is the cleanest way to ship this?"
        ]
        assert body["is_subscribed"] is False

    async def test_unknown_thread(self, client):
        response = await client.get("/api/v1/forum/threads/nothing-here")
        assert response.status_code == 404
        assert response.json()["success"] is False

    async def test_validation_messages(self, client, user, category, auth_headers):
        response = await client.post(
            "/api/v1/forum/threads",
            json=self.payload(category, title="Hi", content="short"),
            headers=auth_headers(user),
        )
        assert response.status_code == 422
        assert response.json()["error"] == (
            "Title must be at least 5 characters, Content must be at least 10 characters"
        )

    async def test_spam_rejected(self, client, user, category, auth_headers):
        response = await client.post(
            "/api/v1/forum/threads",
            json=self.payload(category, content="Buy now while stocks last"),
            headers=auth_headers(user),
        )
        assert response.status_code == 422
        assert response.json()["error"] == "Content was flagged as spam"

    async def test_rate_limited(self, client, user, category, auth_headers, monkeypatch):
        monkeypatch.setattr(settings, "rate_limit_thread_max", 1)
        headers = auth_headers(user)

        first = await client.post(
            "/api/v1/forum/threads", json=self.payload(category), headers=headers
        )
        second = await client.post(
            "/api/v1/forum/threads",
            json=self.payload(category, title="Another thread title"),
            headers=headers,
        )

        assert first.status_code == 201
        assert second.status_code == 429
        body = second.json()
        assert body["success"] is False
        assert body["reset_at"]

    async def test_home_cache_invalidated(self, client, user, category, auth_headers):
        response = await client.get("/api/v1/forum")
        assert response.json()["recent_threads"] == []

        await client.post(
            "/api/v1/forum/threads", json=self.payload(category), headers=auth_headers(user)
        )

        response = await client.get("/api/v1/forum")
        assert [t["title"] for t in response.json()["recent_threads"]] == [
            "Packaging a FastAPI app"
        ]

    async def test_cache_cleared_after_commit(
        self, client, user, category, cache, session_factory, auth_headers, monkeypatch
    ):
        visible = []
        invalidate = cache.invalidate

        async def invalidate_and_record(*tags):
            async with session_factory() as other:
                visible.append(await other.scalar(select(func.count(Thread.id))))
            return await invalidate(*tags)

        monkeypatch.setattr(cache, "invalidate", invalidate_and_record)

        response = await client.post(
            "/api/v1/forum/threads", json=self.payload(category), headers=auth_headers(user)
        )

        assert response.status_code == 201
        assert visible == [1]


class TestPostsApi:
    """Tests for replies, votes and notifications over HTTP."""

    async def test_reply_vote_and_notify(
        self, client, user, make_user, make_thread, auth_headers
    ):
        thread = await make_thread(user)
        replier = await make_user()

        response = await client.post(
            f"/api/v1/forum/threads/{thread.id}/posts",
            json={"content": "Have you tried a src layout?"},
            headers=auth_headers(replier),
        )
        assert response.status_code == 201

        response = await client.post(
            f"/api/v1/forum/posts/{thread.last_post_id}/vote",
            json={"value": 1},
            headers=auth_headers(replier),
        )
        assert response.json() == {"success": True, "score": 1}

        response = await client.get("/api/v1/notifications", headers=auth_headers(user))
        body = response.json()
        assert body["unread_count"] == 2
        assert {n["type"] for n in body["notifications"]} == {"new_reply", "post_upvote"}

        response = await client.post(
            "/api/v1/notifications/read-all", headers=auth_headers(user)
        )
        assert response.json() == {"success": True, "updated": 2}


class TestModerationApi:
    """Tests for reports over HTTP."""

    async def test_report_and_list(self, client, user, admin, make_user, make_thread, auth_headers):
        thread = await make_thread(user)
        reporter = await make_user()

        response = await client.post(
            "/api/v1/moderation/reports",
            json={"target_type": "thread", "target_id": thread.id, "reason": "spam"},
            headers=auth_headers(reporter),
        )
        assert response.status_code == 201
        assert response.json()["report"]["status"] == "pending"

        response = await client.get("/api/v1/moderation/reports", headers=auth_headers(admin))
        reports = response.json()["reports"]
        assert [r["target_id"] for r in reports] == [thread.id]

    async def test_reports_need_permission(self, client, user, auth_headers):
        response = await client.get("/api/v1/moderation/reports", headers=auth_headers(user))
        assert response.status_code == 403

    async def test_role_stats_admin_only(self, client, admin, moderator, auth_headers):
        response = await client.get(
            "/api/v1/moderation/roles/stats", headers=auth_headers(moderator)
        )
        assert response.status_code == 403

        response = await client.get("/api/v1/moderation/roles/stats", headers=auth_headers(admin))
        assert response.json()["stats"]["admins"] == 1


class TestUsersAndAdminApi:
    """Tests for user stats and the admin export."""

    async def test_unknown_user_stats(self, client):
        response = await client.get("/api/v1/users/999/stats")
        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "User not found"}

    async def test_update_own_profile(self, client, user, auth_headers):
        response = await client.patch(
            "/api/v1/users/me", json={"bio": "Hello there"}, headers=auth_headers(user)
        )
        assert response.json()["user"]["bio"] == "Hello there"

        response = await client.patch(
            "/api/v1/users/me", json={"website": "not a url"}, headers=auth_headers(user)
        )
        assert response.status_code == 422
        assert response.json() == {"success": False, "error": "Must be a valid URL"}

    async def test_csv_export(self, client, admin, auth_headers):
        response = await client.get(
            "/api/v1/admin/export", params={"format": "csv"}, headers=auth_headers(admin)
        )
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert response.headers["content-disposition"].startswith(
            'attachment; filename="forum-export-'
        )

    async def test_export_admin_only(self, client, moderator, auth_headers):
        response = await client.get("/api/v1/admin/export", headers=auth_headers(moderator))
        assert response.status_code == 403


class TestSearchApi:
    """Tests for search without a hosted index configured."""

    async def test_thread_search_falls_back(self, client, user, make_thread):
        await make_thread(user, "Python packaging")
        await make_thread(user, "Rust lifetimes")

        response = await client.get("/api/v1/search/threads", params={"q": "python"})
        body = response.json()
        assert body["success"]
        assert [t["title"] for t in body["threads"]] == ["Python packaging"]

    async def test_search_all_not_configured(self, client):
        response = await client.get("/api/v1/search/all", params={"q": "python"})
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Search service not configured"}


class TestWebhooksApi:
    """Tests for webhook management over HTTP."""

    async def test_admin_creates_webhook(self, client, admin, auth_headers):
        response = await client.post(
            "/api/v1/webhooks",
            json={"url": "https://example.com/hook", "events": ["thread.created"]},
            headers=auth_headers(admin),
        )
        assert response.status_code == 201
        webhook = response.json()["webhook"]
        assert len(webhook["secret"]) == 64

        response = await client.get("/api/v1/webhooks", headers=auth_headers(admin))
        listed = response.json()["webhooks"]
        assert [w["id"] for w in listed] == [webhook["id"]]
        assert "secret" not in listed[0]

    async def test_user_forbidden(self, client, user, auth_headers):
        response = await client.post(
            "/api/v1/webhooks",
            json={"url": "https://example.com/hook", "events": ["thread.created"]},
            headers=auth_headers(user),
        )
        assert response.status_code == 403
        assert response.json()["success"] is False
