"""
Webhook Service.

Stores webhook subscriptions and delivers signed forum events to them.
Deliveries run after the response is sent and never fail a request.
"""

import asyncio
import time
from datetime import datetime
from typing import Any
from urllib.parse import urlparse

import httpx
import orjson
from fastapi import BackgroundTasks
from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from openforum.core.config import settings
from openforum.core.database import get_session_factory
from openforum.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from openforum.core.security import generate_secret
from openforum.models.user import User
from openforum.models.webhook import Webhook
from openforum.modules.webhooks.signing import sign_payload

VALID_EVENTS = (
    "thread.created",
    "thread.updated",
    "thread.deleted",
    "post.created",
    "post.updated",
    "post.deleted",
    "user.joined",
    "user.banned",
    "report.created",
)


def _validate_url(url: str) -> None:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError("Invalid webhook URL")


def _validate_events(events: list[str]) -> None:
    invalid = [event for event in events if event not in VALID_EVENTS]
    if invalid:
        raise ValidationError(f"Invalid events: {', '.join(invalid)}")


def _require_admin(actor: User) -> None:
    if not actor.is_admin:
        raise PermissionDeniedError()


class WebhookService:
    """
    Webhook subscriptions and delivery.

    Usage:
        webhooks = WebhookService(db_session)
        await webhooks.trigger_webhook("thread.created", {"thread_id": 1})
    """

    def __init__(
        self,
        db: AsyncSession,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize webhook service.

        Args:
            db: Database session
            transport: Optional httpx transport (tests)
        """
        self.db = db
        self.transport = transport

    # ==================== Management ====================

    async def create_webhook(
        self,
        actor: User,
        url: str,
        events: list[str],
        secret: str | None = None,
    ) -> Webhook:
        """Register a webhook (admin only). The secret defaults to 32 random bytes."""
        _require_admin(actor)
        _validate_url(url)
        _validate_events(events)

        webhook = Webhook(url=url, secret=secret or generate_secret(32), active=True)
        webhook.events = events
        self.db.add(webhook)
        await self.db.flush()

        logger.info(f"Webhook {webhook.id} created for {url}: {events}")
        return webhook

    async def update_webhook(
        self,
        actor: User,
        webhook_id: int,
        url: str | None = None,
        events: list[str] | None = None,
        active: bool | None = None,
    ) -> Webhook:
        _require_admin(actor)
        webhook = await self._get(webhook_id)

        if url is not None:
            _validate_url(url)
            webhook.url = url
        if events is not None:
            _validate_events(events)
            webhook.events = events
        if active is not None:
            webhook.active = active

        await self.db.flush()
        return webhook

    async def delete_webhook(self, actor: User, webhook_id: int) -> None:
        _require_admin(actor)
        webhook = await self._get(webhook_id)
        await self.db.delete(webhook)
        await self.db.flush()
        logger.info(f"Webhook {webhook_id} deleted")

    async def get_webhooks(self, actor: User) -> list[Webhook]:
        _require_admin(actor)
        result = await self.db.execute(select(Webhook).order_by(Webhook.id))
        return list(result.scalars().all())

    async def _get(self, webhook_id: int) -> Webhook:
        webhook = await self.db.get(Webhook, webhook_id)
        if not webhook:
            raise NotFoundError("Webhook")
        return webhook

    # ==================== Delivery ====================

    @staticmethod
    def build_payload(
        event_type: str,
        data: dict[str, Any],
        webhook_id: int,
        timestamp: str | None = None,
    ) -> bytes:
        """Serialized delivery body."""
        return orjson.dumps(
            {
                "type": event_type,
                "data": data,
                "timestamp": timestamp or datetime.utcnow().isoformat() + "Z",
                "webhook_id": webhook_id,
            }
        )

    async def _post(
        self,
        client: httpx.AsyncClient,
        webhook: Webhook,
        event_type: str,
        body: bytes,
    ) -> httpx.Response:
        return await client.post(
            webhook.url,
            content=body,
            headers={
                "Content-Type": "application/json",
                "X-Forum-Signature": sign_payload(body, webhook.secret),
                "X-Forum-Event": event_type,
                "User-Agent": settings.webhook_user_agent,
            },
            timeout=settings.webhook_timeout,
        )

    async def _deliver(
        self,
        client: httpx.AsyncClient,
        webhook: Webhook,
        event_type: str,
        data: dict[str, Any],
        timestamp: str,
    ) -> bool:
        body = self.build_payload(event_type, data, webhook.id, timestamp)
        try:
            response = await self._post(client, webhook, event_type, body)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"Error triggering webhook {webhook.id}: {e}")
            return False
        except Exception:
            # Deliveries to the other receivers still complete
            logger.exception(f"Unexpected error triggering webhook {webhook.id}")
            return False

        if not response.is_success:
            logger.warning(
                f"Webhook {webhook.id} failed: {response.status_code} {response.reason_phrase}"
            )
            return False

        webhook.last_triggered = datetime.utcnow()
        return True

    async def trigger_webhook(self, event_type: str, data: dict[str, Any]) -> int:
        """
        Deliver an event to every active webhook subscribed to it, in parallel.

        Returns:
            Number of successful deliveries
        """
        result = await self.db.execute(select(Webhook).where(Webhook.active == True))
        webhooks = [w for w in result.scalars().all() if event_type in w.events]
        if not webhooks:
            return 0

        timestamp = datetime.utcnow().isoformat() + "Z"
        async with httpx.AsyncClient(transport=self.transport) as client:
            outcomes = await asyncio.gather(
                *(
                    self._deliver(client, webhook, event_type, data, timestamp)
                    for webhook in webhooks
                )
            )

        await self.db.flush()
        delivered = sum(outcomes)
        logger.debug(f"Event {event_type} delivered to {delivered}/{len(webhooks)} webhooks")
        return delivered

    async def test_webhook(self, actor: User, webhook_id: int) -> dict[str, Any]:
        """
        Send a test delivery and measure the response.

        Returns:
            {"success", "response": {"status", "status_text", "response_time"}}
            or {"success": False, "error"} when the receiver is unreachable
        """
        _require_admin(actor)
        webhook = await self._get(webhook_id)

        body = self.build_payload(
            "thread.created",
            {"test": True, "message": "This is a test webhook delivery"},
            webhook.id,
        )

        start = time.perf_counter()
        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await self._post(client, webhook, "thread.created", body)
        except httpx.RequestError as e:
            logger.warning(f"Test delivery to webhook {webhook.id} failed: {e}")
            return {"success": False, "error": str(e) or "Failed to test webhook"}

        return {
            "success": response.is_success,
            "response": {
                "status": response.status_code,
                "status_text": response.reason_phrase,
                "response_time": int((time.perf_counter() - start) * 1000),
            },
        }


async def dispatch_event(
    event_type: str,
    data: dict[str, Any],
    transport: httpx.AsyncBaseTransport | None = None,
) -> None:
    """Deliver an event in its own session. Errors are logged, never raised."""
    try:
        async with get_session_factory()() as session:
            await WebhookService(session, transport=transport).trigger_webhook(
                event_type, data
            )
            await session.commit()
    except Exception as e:
        logger.error(f"Error triggering webhooks for {event_type}: {e}")


def emit_webhook_event(
    background_tasks: BackgroundTasks,
    event_type: str,
    data: dict[str, Any],
) -> None:
    """Schedule delivery of an event after the response is sent."""
    if event_type not in VALID_EVENTS:
        raise ValueError(f"Unknown webhook event: {event_type}")
    background_tasks.add_task(dispatch_event, event_type, data)
