"""
FastAPI dependencies for the current user and role checks.
"""

from typing import Awaitable, Callable

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from openforum.core.database import get_db
from openforum.core.exceptions import (
    NotAuthenticatedError,
    PermissionDeniedError,
    UserBannedError,
)
from openforum.core.security import decode_access_token
from openforum.models.user import User
from openforum.modules.moderation.security import SecurityService

bearer_scheme = HTTPBearer(auto_error=False)


async def _user_from_credentials(
    credentials: HTTPAuthorizationCredentials | None,
    db: AsyncSession,
) -> User | None:
    if not credentials or credentials.scheme.lower() != "bearer":
        return None

    payload = decode_access_token(credentials.credentials)
    if not payload or not str(payload.get("sub", "")).isdigit():
        return None

    return await db.get(User, int(payload["sub"]))


async def get_optional_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User | None:
    """Signed-in user or None. Banned users are treated as anonymous."""
    user = await _user_from_credentials(credentials, db)
    if user is None:
        return None
    if SecurityService.lift_expired_ban(user):
        await db.flush()
    return None if user.banned else user


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Signed-in user from the bearer token.

    Raises:
        NotAuthenticatedError: Missing, invalid or expired token
        UserBannedError: Active ban (expired bans are lifted here)
    """
    user = await _user_from_credentials(credentials, db)
    if user is None:
        raise NotAuthenticatedError()

    if SecurityService.lift_expired_ban(user):
        await db.flush()
    if user.banned:
        raise UserBannedError()
    return user


def require_role(*roles: str) -> Callable[..., Awaitable[User]]:
    """
    Dependency factory restricting an endpoint to some roles.

    Usage:
        @router.get("/analytics")
        async def analytics(user: User = Depends(require_role("admin"))): ...
    """

    async def dependency(user: User = Depends(get_current_user)) -> User:
        if user.effective_role not in roles:
            raise PermissionDeniedError()
        return user

    return dependency
