"""
Email Service.

Sends transactional OTP emails through the Resend HTTP API.
Provider failures are logged and reported in the return value.
"""

from typing import Any

import httpx
from loguru import logger

from openforum.core.config import settings
from openforum.modules.email.templates import render_otp_email


class EmailService:
    """
    Transactional email sender.

    Usage:
        email = EmailService()
        result = await email.send_verification_email("a@b.c", "123456")
    """

    def __init__(
        self,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize email service.

        Args:
            api_key: Resend API key (or from settings)
            transport: Optional httpx transport (tests)
        """
        self.api_key = api_key if api_key is not None else settings.resend_api_key
        self.api_url = settings.resend_api_url
        self.sender = settings.email_from
        self.transport = transport

        if not self.api_key:
            logger.warning("RESEND_API_KEY not configured")

    async def send_email(self, to: str, subject: str, html: str) -> dict[str, Any]:
        """
        Send one email.

        Returns:
            {"success": True, "id": ...} or {"success": False, "error": ...}
        """
        if not self.api_key:
            return {"success": False, "error": "Email provider not configured"}

        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.post(
                    self.api_url,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={
                        "from": self.sender,
                        "to": [to],
                        "subject": subject,
                        "html": html,
                    },
                    timeout=settings.email_timeout,
                )
                response.raise_for_status()
                result = response.json()

        except httpx.HTTPStatusError as e:
            logger.error(f"Resend HTTP error: {e.response.status_code} {e.response.text}")
            return {
                "success": False,
                "error": f"Email provider returned {e.response.status_code}",
            }
        except httpx.RequestError as e:
            logger.error(f"Resend request error: {e}")
            return {"success": False, "error": str(e) or "Failed to send email"}

        logger.info(f"Email '{subject}' sent to {to}")
        return {"success": True, "id": result.get("id")}

    async def send_verification_email(
        self,
        email: str,
        otp: str,
        username: str | None = None,
    ) -> dict[str, Any]:
        """Send the email verification code."""
        body = render_otp_email(
            username=username or email.split("@")[0],
            otp=otp,
            product_name=settings.app_name,
            expires_minutes=settings.otp_expires_in // 60,
        )
        return await self.send_email(email, "Verify your email address", body)

    async def send_forgot_password_email(self, email: str, otp: str) -> dict[str, Any]:
        """Send the password reset code."""
        body = render_otp_email(
            username=email.split("@")[0],
            otp=otp,
            product_name=settings.app_name,
            expires_minutes=settings.otp_expires_in // 60,
            is_password_reset=True,
        )
        return await self.send_email(email, "Reset your password", body)


# Singleton instance
_email_service: EmailService | None = None


def get_email_service() -> EmailService:
    """Get or create email service singleton."""
    global _email_service
    if _email_service is None:
        _email_service = EmailService()
    return _email_service
