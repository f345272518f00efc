"""
Auth API Endpoints.

Registration, sign-in and email one-time codes.
"""

from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from openforum.core.cache import CacheService, get_cache
from openforum.core.config import settings
from openforum.core.database import get_db
from openforum.models.user import User
from openforum.modules.auth.dependencies import get_current_user, get_optional_user
from openforum.modules.auth.service import AuthService
from openforum.modules.moderation.roles import RoleService
from openforum.modules.moderation.security import enforce_rate_limit
from openforum.modules.webhooks.service import emit_webhook_event

router = APIRouter()


# ==================== Schemas ====================


class RegisterRequest(BaseModel):
    email: str
    password: str
    name: str
    username: str | None = None


class SignInRequest(BaseModel):
    """Sign in by email or username."""

    identifier: str
    password: str


class OtpRequest(BaseModel):
    email: str
    type: str


class VerifyEmailRequest(BaseModel):
    email: str
    otp: str


class ResetPasswordRequest(BaseModel):
    email: str
    otp: str
    password: str


class UpdatePasswordRequest(BaseModel):
    new_password: str
    current_password: str | None = None


def account_to_dict(user: User) -> dict[str, Any]:
    """Own account fields, email included."""
    return {
        **user.to_summary(),
        "email": user.email,
        "email_verified": user.email_verified,
        "role": user.effective_role,
        "reputation": user.reputation,
    }


# ==================== Accounts ====================


@router.post("/register", status_code=201)
async def register(
    data: RegisterRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Create an account. A verification code is emailed when required."""
    user = await AuthService(db).register(
        email=data.email,
        password=data.password,
        name=data.name,
        username=data.username,
    )

    emit_webhook_event(
        background_tasks,
        "user.joined",
        {"user_id": user.id, "username": user.username, "name": user.name},
    )
    return {"success": True, "user": account_to_dict(user)}


@router.post("/sign-in")
async def sign_in(
    data: SignInRequest,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    user, token = await AuthService(db).sign_in(data.identifier, data.password)
    return {
        "success": True,
        "token": token,
        "token_type": "bearer",
        "user": account_to_dict(user),
    }


@router.get("/me")
async def me(user: User = Depends(get_current_user)) -> dict[str, Any]:
    return {"success": True, "user": account_to_dict(user)}


@router.get("/permissions")
async def permissions(
    user: User | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Permission map of the caller (all false when signed out)."""
    perms = await RoleService(db).check_permissions(user.id if user else None)
    return {"success": True, "permissions": perms}


# ==================== One-time codes ====================


async def _limit_code_checks(cache: CacheService, email: str) -> None:
    await enforce_rate_limit(
        cache,
        "verify_otp",
        email.strip().lower(),
        settings.rate_limit_otp_window,
        settings.rate_limit_otp_max,
    )


@router.post("/otp")
async def send_otp(
    data: OtpRequest,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Send an email-verification or forget-password code."""
    result = await AuthService(db).send_otp(data.email, data.type)
    return {"success": result.get("success", False), "error": result.get("error")}


@router.post("/verify-email")
async def verify_email(
    data: VerifyEmailRequest,
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
) -> dict[str, Any]:
    await _limit_code_checks(cache, data.email)
    user = await AuthService(db).verify_email(data.email, data.otp)
    return {"success": True, "user": account_to_dict(user)}


@router.post("/reset-password")
async def reset_password(
    data: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
) -> dict[str, Any]:
    await _limit_code_checks(cache, data.email)
    await AuthService(db).reset_password(data.email, data.otp, data.password)
    return {"success": True}


@router.post("/password")
async def update_password(
    data: UpdatePasswordRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    await AuthService(db).update_password(user, data.new_password, data.current_password)
    return {"success": True}
