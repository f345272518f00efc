"""
Webhook API Endpoints.

Admin management of outbound webhooks.
"""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from openforum.core.database import get_db
from openforum.models.user import User
from openforum.modules.auth.dependencies import get_current_user
from openforum.modules.webhooks.service import VALID_EVENTS, WebhookService

router = APIRouter()


# ==================== Schemas ====================


class CreateWebhookRequest(BaseModel):
    url: str
    events: list[str]
    secret: str | None = None


class UpdateWebhookRequest(BaseModel):
    url: str | None = None
    events: list[str] | None = None
    active: bool | None = None


# ==================== Webhooks ====================


@router.get("")
async def get_webhooks(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    webhooks = await WebhookService(db).get_webhooks(user)
    return {"success": True, "webhooks": [w.to_dict() for w in webhooks]}


@router.get("/events")
async def get_events() -> dict[str, Any]:
    return {"success": True, "events": list(VALID_EVENTS)}


@router.post("", status_code=201)
async def create_webhook(
    data: CreateWebhookRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Register a webhook. The secret is only returned here."""
    webhook = await WebhookService(db).create_webhook(user, data.url, data.events, data.secret)
    return {"success": True, "webhook": webhook.to_dict(include_secret=True)}


@router.patch("/{webhook_id}")
async def update_webhook(
    webhook_id: int,
    data: UpdateWebhookRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    webhook = await WebhookService(db).update_webhook(
        user, webhook_id, url=data.url, events=data.events, active=data.active
    )
    return {"success": True, "webhook": webhook.to_dict()}


@router.delete("/{webhook_id}")
async def delete_webhook(
    webhook_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    await WebhookService(db).delete_webhook(user, webhook_id)
    return {"success": True}


@router.post("/{webhook_id}/test")
async def test_webhook(
    webhook_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Send a test delivery and report the receiver's response."""
    return await WebhookService(db).test_webhook(user, webhook_id)
