"""
Tests for password hashing, tokens, email delivery and the account flows.
"""

import json
from datetime import datetime, timedelta

import httpx
import jwt
import pytest
from sqlalchemy import select

from openforum.core.config import settings
from openforum.core.exceptions import (
    ConflictError,
    NotAuthenticatedError,
    UserBannedError,
    ValidationError,
)
from openforum.core.security import (
    create_access_token,
    decode_access_token,
    generate_otp,
    generate_secret,
    hash_password,
    verify_password,
)
from openforum.models.user import Verification
from openforum.modules.auth.service import AuthService
from openforum.modules.email.service import EmailService
from openforum.modules.email.templates import render_otp_email


class Outbox:
    """Fake email provider keeping every sent message."""

    def __init__(self, status_code: int = 200) -> None:
        self.status_code = status_code
        self.messages: list[dict] = []
        self.headers: list[httpx.Headers] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.headers.append(request.headers)
        self.messages.append(json.loads(request.content))
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"message": "rejected"})
        return httpx.Response(200, json={"id": f"email_{len(self.messages)}"})

    def service(self) -> EmailService:
        return EmailService(api_key="re_test", transport=httpx.MockTransport(self))


class TestPasswords:
    """Tests for argon2 hashing."""

    def test_hash_and_verify(self):
        hashed = hash_password("correct horse")
        assert hashed.startswith("$argon2")
        assert verify_password("correct horse", hashed)
        assert not verify_password("wrong horse", hashed)

    def test_missing_or_garbage_hash(self):
        assert not verify_password("anything", None)
        assert not verify_password("anything", "not-a-hash")


class TestTokens:
    """Tests for bearer tokens and random codes."""

    def test_round_trip(self):
        payload = decode_access_token(create_access_token(42, "moderator"))
        assert payload["sub"] == "42"
        assert payload["role"] == "moderator"

    def test_expired(self):
        token = create_access_token(1, expires_delta=timedelta(seconds=-10))
        assert decode_access_token(token) is None

    def test_wrong_key(self):
        token = jwt.encode({"sub": "1"}, "another-key", algorithm="HS256")
        assert decode_access_token(token) is None

    def test_otp_and_secret(self):
        otp = generate_otp()
        assert len(otp) == 6 and otp.isdigit()
        assert len(generate_otp(8)) == 8
        assert len(generate_secret(16)) == 32


class TestEmailService:
    """Tests for the email provider client."""

    async def test_sends_with_bearer_key(self):
        outbox = Outbox()
        result = await outbox.service().send_email("a@example.com", "Hello", "<p>Hi</p>")

        assert result == {"success": True, "id": "email_1"}
        assert outbox.headers[0]["Authorization"] == "Bearer re_test"
        assert outbox.messages[0]["to"] == ["a@example.com"]
        assert outbox.messages[0]["from"] == "OpenForum <noreply@openforum.local>"

    async def test_provider_error(self):
        result = await Outbox(status_code=422).service().send_email("a@example.com", "Hi", "x")
        assert result == {"success": False, "error": "Email provider returned 422"}

    async def test_not_configured(self):
        result = await EmailService(api_key="").send_email("a@example.com", "Hi", "x")
        assert result == {"success": False, "error": "Email provider not configured"}

    def test_template(self):
        body = render_otp_email("<ada>", "123456", "OpenForum", expires_minutes=15)
        assert "Hello &lt;ada&gt;," in body
        assert "Verify your account" in body
        assert "15 minutes" in body
        assert body.count("<span") == 6

        reset = render_otp_email("ada", "1", "OpenForum", is_password_reset=True)
        assert "Reset your password" in reset


class TestRegister:
    """Tests for account creation."""

    async def test_register(self, db):
        outbox = Outbox()
        user = await AuthService(db, email=outbox.service()).register(
            " Ada@Example.com ", "password123", "Ada", username="Ada_L"
        )

        assert user.email == "ada@example.com"
        assert user.username == "ada_l"
        assert user.display_username == "Ada_L"
        assert verify_password("password123", user.hashed_password)
        # Verification is off in the test settings
        assert user.email_verified
        assert outbox.messages == []

    async def test_duplicate_email(self, db, user):
        with pytest.raises(ConflictError):
            await AuthService(db, email=Outbox().service()).register(
                user.email.upper(), "password123", "Copy"
            )

    async def test_duplicate_username(self, db, user):
        with pytest.raises(ConflictError, match="Username is already taken"):
            await AuthService(db, email=Outbox().service()).register(
                "new@example.com", "password123", "Copy", username=user.username.upper()
            )

    async def test_reserved_username(self, db):
        with pytest.raises(ValidationError, match="This username is reserved"):
            await AuthService(db, email=Outbox().service()).register(
                "new@example.com", "password123", "Admin", username="admin"
            )

    async def test_weak_password(self, db):
        with pytest.raises(ValidationError, match="at least 8 characters"):
            await AuthService(db, email=Outbox().service()).register(
                "new@example.com", "short", "Ada"
            )


class TestSignIn:
    """Tests for sign-in."""

    async def test_by_email_or_username(self, db, user):
        auth = AuthService(db, email=Outbox().service())

        signed_in, token = await auth.sign_in(user.email.upper(), "password123")
        assert signed_in.id == user.id
        assert decode_access_token(token)["sub"] == str(user.id)

        signed_in, _ = await auth.sign_in(user.username, "password123")
        assert signed_in.id == user.id

    async def test_wrong_password(self, db, user):
        with pytest.raises(NotAuthenticatedError, match="Invalid email or password"):
            await AuthService(db, email=Outbox().service()).sign_in(user.email, "nope")

    async def test_unknown_account(self, db):
        with pytest.raises(NotAuthenticatedError):
            await AuthService(db, email=Outbox().service()).sign_in("ghost@example.com", "x")

    async def test_banned(self, db, make_user):
        banned = await make_user(banned=True, ban_reason="spam")
        with pytest.raises(UserBannedError):
            await AuthService(db, email=Outbox().service()).sign_in(banned.email, "password123")

    async def test_expired_ban_lifted(self, db, make_user):
        user = await make_user(banned=True, ban_expires=datetime.utcnow() - timedelta(hours=1))
        signed_in, _ = await AuthService(db, email=Outbox().service()).sign_in(
            user.email, "password123"
        )
        assert not signed_in.banned


class TestOneTimeCodes:
    """Tests for OTP issue and consumption."""

    async def stored_code(self, db, identifier):
        return await db.scalar(
            select(Verification.value).where(Verification.identifier == identifier)
        )

    async def test_invalid_type(self, db, user):
        with pytest.raises(ValidationError, match="Invalid type"):
            await AuthService(db, email=Outbox().service()).send_otp(user.email, "sign-in")

    async def test_unknown_email_is_silent(self, db):
        outbox = Outbox()
        result = await AuthService(db, email=outbox.service()).send_otp(
            "ghost@example.com", "forget-password"
        )
        assert result == {"success": True}
        assert outbox.messages == []

    async def test_new_code_replaces_old(self, db, user):
        auth = AuthService(db, email=Outbox().service())
        await auth.send_otp(user.email, "forget-password")
        await auth.send_otp(user.email, "forget-password")

        codes = (
            await db.execute(
                select(Verification).where(
                    Verification.identifier == f"forget-password:{user.email}"
                )
            )
        ).scalars().all()
        assert len(codes) == 1

    async def test_reset_password(self, db, make_user):
        user = await make_user(email_verified=False)
        outbox = Outbox()
        auth = AuthService(db, email=outbox.service())

        result = await auth.send_otp(user.email, "forget-password")
        assert result["success"]
        assert outbox.messages[0]["subject"] == "Reset your password"

        code = await self.stored_code(db, f"forget-password:{user.email}")
        wrong = "000000" if code != "000000" else "111111"
        with pytest.raises(ValidationError, match="Invalid or expired OTP"):
            await auth.reset_password(user.email, wrong, "newpassword1")

        await auth.reset_password(user.email, code, "newpassword1")
        assert verify_password("newpassword1", user.hashed_password)
        assert user.email_verified

        # Codes are single use
        with pytest.raises(ValidationError):
            await auth.reset_password(user.email, code, "another-pass")

    async def test_verify_email(self, db, make_user):
        user = await make_user(email_verified=False)
        auth = AuthService(db, email=Outbox().service())
        await auth.send_otp(user.email, "email-verification")
        code = await self.stored_code(db, f"email-verification:{user.email}")

        verified = await auth.verify_email(user.email, code)
        assert verified.email_verified

    async def test_expired_code(self, db, user):
        db.add(
            Verification(
                identifier=f"email-verification:{user.email}",
                value="123456",
                expires_at=datetime.utcnow() - timedelta(minutes=1),
            )
        )
        await db.commit()

        with pytest.raises(ValidationError, match="Invalid or expired OTP"):
            await AuthService(db, email=Outbox().service()).verify_email(user.email, "123456")

    async def test_wrong_guesses_burn_code(self, db, user, monkeypatch):
        monkeypatch.setattr(settings, "otp_max_attempts", 3)
        auth = AuthService(db, email=Outbox().service())
        await auth.send_otp(user.email, "forget-password")
        identifier = f"forget-password:{user.email}"
        code = await self.stored_code(db, identifier)
        wrong = "000000" if code != "000000" else "111111"

        for _ in range(2):
            with pytest.raises(ValidationError, match="Invalid or expired OTP"):
                await auth.reset_password(user.email, wrong, "newpassword1")
        attempts = await db.scalar(
            select(Verification.attempts).where(Verification.identifier == identifier)
        )
        assert attempts == 2

        with pytest.raises(ValidationError):
            await auth.reset_password(user.email, wrong, "newpassword1")
        assert await self.stored_code(db, identifier) is None

        # The right code no longer works once the limit is reached
        with pytest.raises(ValidationError, match="Invalid or expired OTP"):
            await auth.reset_password(user.email, code, "newpassword1")
        assert verify_password("password123", user.hashed_password)

    async def test_failed_attempt_survives_rollback(self, db, session_factory, user):
        auth = AuthService(db, email=Outbox().service())
        await auth.send_otp(user.email, "email-verification")
        await db.commit()

        with pytest.raises(ValidationError):
            await auth.verify_email(user.email, "not-the-code")
        await db.rollback()

        async with session_factory() as other:
            attempts = await other.scalar(
                select(Verification.attempts).where(
                    Verification.identifier == f"email-verification:{user.email}"
                )
            )
        assert attempts == 1

    async def test_unknown_email_looks_like_bad_code(self, db):
        auth = AuthService(db, email=Outbox().service())
        with pytest.raises(ValidationError, match="Invalid or expired OTP"):
            await auth.verify_email("ghost@example.com", "123456")
        with pytest.raises(ValidationError, match="Invalid or expired OTP"):
            await auth.reset_password("ghost@example.com", "123456", "newpassword1")

    async def test_update_password(self, db, user):
        auth = AuthService(db, email=Outbox().service())
        with pytest.raises(ValidationError, match="Current password is incorrect"):
            await auth.update_password(user, "newpassword1", current_password="wrong")

        await auth.update_password(user, "newpassword1", current_password="password123")
        assert verify_password("newpassword1", user.hashed_password)
