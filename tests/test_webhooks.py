"""
Tests for webhook management, signing and delivery.
"""

import httpx
import orjson
import pytest
from fastapi import BackgroundTasks

from openforum.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from openforum.models.webhook import Webhook
from openforum.modules.webhooks.service import (
    VALID_EVENTS,
    WebhookService,
    dispatch_event,
    emit_webhook_event,
)
from openforum.modules.webhooks.signing import sign_payload, verify_signature


class Receiver:
    """Records deliveries and answers with a fixed status."""

    def __init__(self, status_code: int = 200) -> None:
        self.status_code = status_code
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json={"ok": True})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def unreachable(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


class TestSigning:
    """Tests for HMAC signatures."""

    def test_known_vector(self):
        # hmac.new(b"key", b"The quick brown fox jumps over the lazy dog", sha256)
        assert sign_payload(b"The quick brown fox jumps over the lazy dog", "key") == (
            "f7bc83f430538424b13298e6aa6fb143ef4d59a14946175997479dbc2d1a3cd8"
        )

    def test_verify(self):
        body = b'{"type":"thread.created"}'
        signature = sign_payload(body, "secret")

        assert verify_signature(body, signature, "secret")
        assert not verify_signature(body, signature, "other-secret")
        assert not verify_signature(body + b" ", signature, "secret")
        assert not verify_signature(body, None, "secret")


class TestWebhookManagement:
    """Tests for webhook CRUD."""

    async def test_admin_only(self, db, moderator):
        with pytest.raises(PermissionDeniedError):
            await WebhookService(db).create_webhook(
                moderator, "https://example.com/hook", ["thread.created"]
            )

    async def test_create_generates_secret(self, db, admin):
        webhook = await WebhookService(db).create_webhook(
            admin, "https://example.com/hook", ["thread.created", "post.created"]
        )
        assert len(webhook.secret) == 64
        assert webhook.active
        assert webhook.events == ["thread.created", "post.created"]
        assert "secret" not in webhook.to_dict()
        assert webhook.to_dict(include_secret=True)["secret"] == webhook.secret

    async def test_invalid_url(self, db, admin):
        with pytest.raises(ValidationError, match="Invalid webhook URL"):
            await WebhookService(db).create_webhook(admin, "ftp://example.com", ["thread.created"])

    async def test_invalid_events(self, db, admin):
        with pytest.raises(ValidationError, match="Invalid events: thread.exploded"):
            await WebhookService(db).create_webhook(
                admin, "https://example.com/hook", ["thread.created", "thread.exploded"]
            )

    async def test_update_and_delete(self, db, admin):
        service = WebhookService(db)
        webhook = await service.create_webhook(admin, "https://example.com/a", ["user.joined"])

        updated = await service.update_webhook(
            admin, webhook.id, url="https://example.com/b", active=False
        )
        assert updated.url == "https://example.com/b"
        assert not updated.active
        assert updated.events == ["user.joined"]

        await service.delete_webhook(admin, webhook.id)
        assert await service.get_webhooks(admin) == []
        with pytest.raises(NotFoundError, match="Webhook not found"):
            await service.delete_webhook(admin, webhook.id)


class TestDelivery:
    """Tests for event delivery."""

    async def test_delivers_signed_payload(self, db, admin):
        receiver = Receiver()
        service = WebhookService(db, transport=receiver.transport)
        webhook = await service.create_webhook(
            admin, "https://example.com/hook", ["thread.created"], secret="s3cret"
        )

        delivered = await service.trigger_webhook("thread.created", {"thread_id": 7})

        assert delivered == 1
        request = receiver.requests[0]
        assert request.headers["X-Forum-Event"] == "thread.created"
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["User-Agent"] == "OpenForum-Webhooks/1.0"
        assert verify_signature(request.content, request.headers["X-Forum-Signature"], "s3cret")

        payload = orjson.loads(request.content)
        assert payload["type"] == "thread.created"
        assert payload["data"] == {"thread_id": 7}
        assert payload["webhook_id"] == webhook.id
        assert payload["timestamp"].endswith("Z")
        assert webhook.last_triggered is not None

    async def test_only_active_subscribers(self, db, admin):
        receiver = Receiver()
        service = WebhookService(db, transport=receiver.transport)
        await service.create_webhook(admin, "https://a.example.com", ["post.created"])
        inactive = await service.create_webhook(admin, "https://b.example.com", ["post.created"])
        await service.create_webhook(admin, "https://c.example.com", ["user.joined"])
        await service.update_webhook(admin, inactive.id, active=False)

        assert await service.trigger_webhook("post.created", {"post_id": 1}) == 1
        assert [r.url.host for r in receiver.requests] == ["a.example.com"]

    async def test_failed_delivery_not_raised(self, db, admin):
        receiver = Receiver(status_code=500)
        service = WebhookService(db, transport=receiver.transport)
        webhook = await service.create_webhook(admin, "https://example.com", ["post.deleted"])

        assert await service.trigger_webhook("post.deleted", {"post_id": 1}) == 0
        assert webhook.last_triggered is None

    async def test_unreachable_receiver(self, db, admin):
        service = WebhookService(db, transport=httpx.MockTransport(unreachable))
        await service.create_webhook(admin, "https://example.com", ["user.banned"])

        assert await service.trigger_webhook("user.banned", {"user_id": 1}) == 0

    async def test_broken_receiver_isolated(self, db, admin):
        receiver = Receiver()

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "broken.example.com":
                raise RuntimeError("handler blew up")
            return receiver(request)

        service = WebhookService(db, transport=httpx.MockTransport(handler))
        broken = await service.create_webhook(
            admin, "https://broken.example.com", ["thread.created"]
        )
        healthy = await service.create_webhook(admin, "https://ok.example.com", ["thread.created"])

        assert await service.trigger_webhook("thread.created", {"thread_id": 1}) == 1
        assert [r.url.host for r in receiver.requests] == ["ok.example.com"]
        assert healthy.last_triggered is not None
        assert broken.last_triggered is None

    async def test_test_delivery(self, db, admin):
        receiver = Receiver()
        service = WebhookService(db, transport=receiver.transport)
        webhook = await service.create_webhook(admin, "https://example.com", ["user.joined"])

        result = await service.test_webhook(admin, webhook.id)

        assert result["success"]
        assert result["response"]["status"] == 200
        assert result["response"]["status_text"] == "OK"
        payload = orjson.loads(receiver.requests[0].content)
        assert payload["data"] == {"test": True, "message": "This is a test webhook delivery"}

    async def test_test_delivery_unreachable(self, db, admin):
        service = WebhookService(db, transport=httpx.MockTransport(unreachable))
        webhook = await service.create_webhook(admin, "https://example.com", ["user.joined"])

        result = await service.test_webhook(admin, webhook.id)
        assert result == {"success": False, "error": "connection refused"}

    async def test_dispatch_uses_own_session(self, db, session_factory):
        receiver = Receiver()
        db.add(Webhook(url="https://example.com", events_json='["report.created"]', secret="x"))
        await db.commit()

        await dispatch_event("report.created", {"report_id": 3}, transport=receiver.transport)

        assert len(receiver.requests) == 1
        async with session_factory() as session:
            stored = await session.get(Webhook, 1)
            assert stored.last_triggered is not None


class TestEmit:
    """Tests for scheduling deliveries."""

    def test_schedules_background_task(self):
        tasks = BackgroundTasks()
        emit_webhook_event(tasks, "user.joined", {"user_id": 1})

        assert len(tasks.tasks) == 1
        assert tasks.tasks[0].func is dispatch_event
        assert tasks.tasks[0].args == ("user.joined", {"user_id": 1})

    def test_unknown_event(self):
        with pytest.raises(ValueError):
            emit_webhook_event(BackgroundTasks(), "thread.exploded", {})

    def test_event_catalogue(self):
        assert len(VALID_EVENTS) == 9
        assert "report.created" in VALID_EVENTS
