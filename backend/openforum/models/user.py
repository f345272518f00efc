"""
User and verification models for authentication.
"""

import json
from datetime import datetime
from enum import Enum as PyEnum
from typing import TYPE_CHECKING, Any

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from openforum.core.database import Base

if TYPE_CHECKING:
    from openforum.models.forum import CategoryModerator, Post, Thread
    from openforum.models.notification import Notification


class UserRole(str, PyEnum):
    """Forum roles."""

    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"


class User(Base):
    """User account model."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    hashed_password: Mapped[str | None] = mapped_column(String(255))

    # Profile
    name: Mapped[str] = mapped_column(String(255))
    username: Mapped[str | None] = mapped_column(String(30), unique=True, index=True)
    display_username: Mapped[str | None] = mapped_column(String(30))
    image: Mapped[str | None] = mapped_column(String(500))
    bio: Mapped[str | None] = mapped_column(Text)
    signature: Mapped[str | None] = mapped_column(Text)
    website: Mapped[str | None] = mapped_column(String(500))
    location: Mapped[str | None] = mapped_column(String(100))
    metadata_json: Mapped[str | None] = mapped_column("metadata", Text)
    profile_updated_at: Mapped[datetime | None] = mapped_column(DateTime)

    # Role and moderation
    role: Mapped[str | None] = mapped_column(String(20), default=UserRole.USER.value)
    banned: Mapped[bool | None] = mapped_column(Boolean, default=False)
    ban_reason: Mapped[str | None] = mapped_column(Text)
    ban_expires: Mapped[datetime | None] = mapped_column(DateTime)
    reputation: Mapped[int] = mapped_column(Integer, default=0)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # Relationships
    threads: Mapped[list["Thread"]] = relationship(back_populates="author")
    posts: Mapped[list["Post"]] = relationship(back_populates="author")
    moderated_categories: Mapped[list["CategoryModerator"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    notifications: Mapped[list["Notification"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    @property
    def effective_role(self) -> str:
        """Role with the unset case mapped to a plain user."""
        return self.role or UserRole.USER.value

    @property
    def is_admin(self) -> bool:
        return self.effective_role == UserRole.ADMIN.value

    @property
    def is_moderator(self) -> bool:
        return self.effective_role in (UserRole.ADMIN.value, UserRole.MODERATOR.value)

    @property
    def user_metadata(self) -> dict[str, Any]:
        """Parsed metadata blob."""
        if not self.metadata_json:
            return {}
        try:
            return json.loads(self.metadata_json)
        except json.JSONDecodeError:
            return {}

    def to_summary(self) -> dict[str, Any]:
        """Public author fields embedded in thread and post listings."""
        return {
            "id": self.id,
            "name": self.name,
            "username": self.username,
            "display_username": self.display_username,
            "image": self.image,
        }

    def __repr__(self) -> str:
        return f"<User {self.username or self.email}>"


class Verification(Base):
    """One-time code issued for email verification or password reset."""

    __tablename__ = "verifications"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    identifier: Mapped[str] = mapped_column(String(300), index=True)
    value: Mapped[str] = mapped_column(String(20))
    expires_at: Mapped[datetime] = mapped_column(DateTime)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<Verification {self.identifier}>"
