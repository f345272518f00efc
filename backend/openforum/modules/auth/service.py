"""
Auth Service - registration, sign-in and one-time codes.
"""

import hmac
from datetime import datetime, timedelta
from typing import Any

from loguru import logger
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from openforum.core.config import settings
from openforum.core.exceptions import (
    ConflictError,
    NotAuthenticatedError,
    PermissionDeniedError,
    UserBannedError,
    ValidationError,
)
from openforum.core.security import (
    create_access_token,
    generate_otp,
    hash_password,
    verify_password,
)
from openforum.models.user import User, Verification
from openforum.modules.email.service import EmailService, get_email_service
from openforum.modules.forum.validation import validate_username
from openforum.modules.moderation.security import SecurityService

OTP_TYPES = ("email-verification", "forget-password")
MIN_PASSWORD_LENGTH = 8


def _check_password(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
        )


class AuthService:
    """
    Account lifecycle with email one-time codes.

    Usage:
        auth = AuthService(db_session)
        user, token = await auth.sign_in("user@example.com", "secret123")
    """

    def __init__(self, db: AsyncSession, email: EmailService | None = None) -> None:
        self.db = db
        self.email = email or get_email_service()

    async def get_user_by_email(self, email: str) -> User | None:
        return await self.db.scalar(
            select(User).where(func.lower(User.email) == email.strip().lower())
        )

    async def register(
        self,
        email: str,
        password: str,
        name: str,
        username: str | None = None,
    ) -> User:
        """
        Create an account and send the email verification code.

        Raises:
            ValidationError: Bad username or weak password
            ConflictError: Email or username already taken
        """
        email = email.strip().lower()
        _check_password(password)

        if username:
            valid, error = validate_username(username)
            if not valid:
                raise ValidationError(error)

        if await self.get_user_by_email(email):
            raise ConflictError("An account with this email already exists")
        if username and await self.db.scalar(
            select(User.id).where(func.lower(User.username) == username.lower())
        ):
            raise ConflictError("Username is already taken")

        user = User(
            email=email,
            hashed_password=hash_password(password),
            name=name.strip() or email.split("@")[0],
            username=username.lower() if username else None,
            display_username=username,
            email_verified=not settings.require_email_verification,
        )
        self.db.add(user)
        await self.db.flush()

        logger.info(f"User registered: {user.id} ({email})")

        if settings.require_email_verification:
            await self.send_otp(email, "email-verification")
        return user

    async def sign_in(self, identifier: str, password: str) -> tuple[User, str]:
        """
        Authenticate by email or username.

        Returns:
            (user, bearer token)
        """
        identifier = identifier.strip().lower()
        user = await self.db.scalar(
            select(User).where(
                or_(func.lower(User.email) == identifier, User.username == identifier)
            )
        )
        if not user or not verify_password(password, user.hashed_password):
            raise NotAuthenticatedError("Invalid email or password")

        if settings.require_email_verification and not user.email_verified:
            raise PermissionDeniedError("Email not verified")

        SecurityService.lift_expired_ban(user)
        if user.banned:
            raise UserBannedError()

        logger.info(f"User {user.id} signed in")
        return user, create_access_token(user.id, user.effective_role)

    async def send_otp(self, email: str, type: str) -> dict[str, Any]:
        """
        Issue a one-time code and email it.

        A new code replaces any earlier one for the same purpose and email.
        Unknown emails are accepted silently so accounts cannot be probed.
        """
        if type not in OTP_TYPES:
            raise ValidationError("Invalid type")

        email = email.strip().lower()
        user = await self.get_user_by_email(email)
        if not user:
            logger.info(f"OTP requested for unknown email {email}")
            return {"success": True}

        identifier = f"{type}:{email}"
        otp = generate_otp()

        await self.db.execute(delete(Verification).where(Verification.identifier == identifier))
        self.db.add(
            Verification(
                identifier=identifier,
                value=otp,
                expires_at=datetime.utcnow() + timedelta(seconds=settings.otp_expires_in),
            )
        )
        await self.db.flush()

        if type == "email-verification":
            return await self.email.send_verification_email(email, otp, user.name)
        return await self.email.send_forgot_password_email(email, otp)

    async def _consume_otp(self, type: str, email: str, otp: str) -> None:
        """
        Check and spend a one-time code.

        Every wrong guess counts against the code; it is discarded once
        settings.otp_max_attempts wrong guesses have been made.
        """
        identifier = f"{type}:{email}"
        verification = await self.db.scalar(
            select(Verification)
            .where(Verification.identifier == identifier)
            .order_by(Verification.id.desc())
            .limit(1)
        )
        if not verification or verification.expires_at < datetime.utcnow():
            raise ValidationError("Invalid or expired OTP")

        if not hmac.compare_digest(verification.value.encode(), otp.strip().encode()):
            verification.attempts = (verification.attempts or 0) + 1
            if verification.attempts >= settings.otp_max_attempts:
                logger.warning(f"OTP for {identifier} discarded after too many attempts")
                await self.db.delete(verification)
            # The request session rolls back on error, so keep the count now
            await self.db.commit()
            raise ValidationError("Invalid or expired OTP")

        await self.db.delete(verification)

    async def verify_email(self, email: str, otp: str) -> User:
        email = email.strip().lower()
        user = await self.get_user_by_email(email)
        if not user:
            raise ValidationError("Invalid or expired OTP")

        await self._consume_otp("email-verification", email, otp)
        user.email_verified = True
        await self.db.flush()

        logger.info(f"Email verified for user {user.id}")
        return user

    async def reset_password(self, email: str, otp: str, new_password: str) -> User:
        email = email.strip().lower()
        _check_password(new_password)

        user = await self.get_user_by_email(email)
        if not user:
            raise ValidationError("Invalid or expired OTP")

        await self._consume_otp("forget-password", email, otp)
        user.hashed_password = hash_password(new_password)
        # Receiving the code proves ownership of the address
        user.email_verified = True
        await self.db.flush()

        logger.info(f"Password reset for user {user.id}")
        return user

    async def update_password(
        self,
        user: User,
        new_password: str,
        current_password: str | None = None,
    ) -> None:
        """Change the password of a signed-in user."""
        _check_password(new_password)
        if current_password is not None and not verify_password(
            current_password, user.hashed_password
        ):
            raise ValidationError("Current password is incorrect")

        user.hashed_password = hash_password(new_password)
        await self.db.flush()
        logger.info(f"Password updated for user {user.id}")
