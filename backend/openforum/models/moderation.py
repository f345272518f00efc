"""
Moderation models: content reports.
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from openforum.core.database import Base

if TYPE_CHECKING:
    from openforum.models.user import User


class ReportStatus(str, PyEnum):
    PENDING = "pending"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class ReportTarget(str, PyEnum):
    POST = "post"
    THREAD = "thread"
    USER = "user"


class ReportAction(str, PyEnum):
    DISMISS = "dismiss"
    WARN = "warn"
    MODERATE = "moderate"
    BAN = "ban"


class Report(Base):
    """User report on a post, thread or user."""

    __tablename__ = "reports"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    target_type: Mapped[str] = mapped_column(String(20))
    reason: Mapped[str] = mapped_column(String(50))
    details: Mapped[str | None] = mapped_column(Text)

    # Exactly one of these identifies the target
    thread_id: Mapped[int | None] = mapped_column(
        ForeignKey("threads.id", ondelete="SET NULL")
    )
    post_id: Mapped[int | None] = mapped_column(
        ForeignKey("posts.id", ondelete="SET NULL")
    )
    reported_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )

    reporter_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)

    status: Mapped[str] = mapped_column(
        String(20), default=ReportStatus.PENDING.value, index=True
    )
    resolution: Mapped[str | None] = mapped_column(String(20))
    admin_notes: Mapped[str | None] = mapped_column(Text)
    closed_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"))
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    reporter: Mapped["User"] = relationship(foreign_keys=[reporter_id])
    reported: Mapped[Optional["User"]] = relationship(foreign_keys=[reported_id])

    @property
    def target_id(self) -> int | None:
        return {
            ReportTarget.THREAD.value: self.thread_id,
            ReportTarget.POST.value: self.post_id,
            ReportTarget.USER.value: self.reported_id,
        }.get(self.target_type)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "reason": self.reason,
            "details": self.details,
            "thread_id": self.thread_id,
            "post_id": self.post_id,
            "reported_id": self.reported_id,
            "reporter_id": self.reporter_id,
            "status": self.status,
            "resolution": self.resolution,
            "admin_notes": self.admin_notes,
            "closed_by": self.closed_by,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "created_at": self.created_at.isoformat(),
        }
