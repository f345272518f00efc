"""
Security Service - bans and rate limiting.
"""

from datetime import datetime
from typing import Any

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from openforum.core.cache import CacheService
from openforum.core.exceptions import NotFoundError, PermissionDeniedError, RateLimitedError
from openforum.models.user import User


async def check_rate_limit(
    cache: CacheService,
    action: str,
    identifier: str | None,
    window_seconds: int,
    max_requests: int,
) -> tuple[bool, datetime | None]:
    """
    Fixed-window rate limit for an action.

    Returns:
        (allowed, reset_at)
    """
    return await cache.check_rate_limit(
        action, identifier or "anonymous", window_seconds, max_requests
    )


async def enforce_rate_limit(
    cache: CacheService,
    action: str,
    identifier: str | None,
    window_seconds: int,
    max_requests: int,
) -> None:
    """Raise RateLimitedError when the action exceeds its limit."""
    allowed, reset_at = await check_rate_limit(
        cache, action, identifier, window_seconds, max_requests
    )
    if not allowed:
        logger.warning(f"Rate limit hit: {action} by {identifier or 'anonymous'}")
        raise RateLimitedError(reset_at=reset_at)


class SecurityService:
    """
    Ban management.

    Usage:
        security = SecurityService(db_session)
        await security.ban_user(admin, user_id, "spam")
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def ban_user(
        self,
        actor: User,
        user_id: int,
        reason: str,
        expires_at: datetime | None = None,
    ) -> User:
        """Ban a user (admin only). A missing expiry means a permanent ban."""
        if not actor.is_admin:
            raise PermissionDeniedError()

        user = await self.db.get(User, user_id)
        if not user:
            raise NotFoundError("User")

        user.banned = True
        user.ban_reason = reason
        user.ban_expires = expires_at
        await self.db.flush()

        logger.info(f"User {user_id} banned by {actor.id}: {reason}")
        return user

    async def unban_user(self, actor: User, user_id: int) -> User:
        """Lift a ban (admin only)."""
        if not actor.is_admin:
            raise PermissionDeniedError()

        user = await self.db.get(User, user_id)
        if not user:
            raise NotFoundError("User")

        self._clear_ban(user)
        await self.db.flush()

        logger.info(f"User {user_id} unbanned by {actor.id}")
        return user

    async def check_user_ban(self, user_id: int) -> dict[str, Any]:
        """
        Current ban state of a user.

        Expired bans are lifted on read.
        """
        user = await self.db.get(User, user_id)
        if not user:
            return {"banned": False}

        if self.lift_expired_ban(user):
            await self.db.flush()
            return {"banned": False}

        return {
            "banned": bool(user.banned),
            "reason": user.ban_reason,
            "expires_at": user.ban_expires.isoformat() if user.ban_expires else None,
        }

    @staticmethod
    def lift_expired_ban(user: User) -> bool:
        """Clear an expired ban in place. Returns True if one was lifted."""
        if user.banned and user.ban_expires and datetime.utcnow() > user.ban_expires:
            SecurityService._clear_ban(user)
            logger.info(f"Ban on user {user.id} expired")
            return True
        return False

    @staticmethod
    def _clear_ban(user: User) -> None:
        user.banned = False
        user.ban_reason = None
        user.ban_expires = None
