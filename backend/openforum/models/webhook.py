"""
Outbound webhook subscriptions.
"""

import json
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from openforum.core.database import Base


class Webhook(Base):
    """Registered receiver for forum events."""

    __tablename__ = "webhooks"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    url: Mapped[str] = mapped_column(String(500))
    events_json: Mapped[str] = mapped_column("events", Text, default="[]")
    secret: Mapped[str] = mapped_column(String(128))
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    last_triggered: Mapped[datetime | None] = mapped_column(DateTime)

    @property
    def events(self) -> list[str]:
        return json.loads(self.events_json or "[]")

    @events.setter
    def events(self, value: list[str]) -> None:
        self.events_json = json.dumps(list(value))

    def to_dict(self, include_secret: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "url": self.url,
            "events": self.events,
            "active": self.active,
            "created_at": self.created_at.isoformat(),
            "last_triggered": (
                self.last_triggered.isoformat() if self.last_triggered else None
            ),
        }
        if include_secret:
            data["secret"] = self.secret
        return data

    def __repr__(self) -> str:
        return f"<Webhook {self.url}>"
