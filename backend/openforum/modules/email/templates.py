"""
HTML templates for transactional emails.
"""

import html
from datetime import datetime

OTP_EMAIL_TEMPLATE = """
<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <title>{preview}</title>
  </head>
  <body style="background:#f3f4f6;font-family:sans-serif;">
    <div style="margin:40px auto;max-width:600px;border:1px solid #e5e7eb;border-radius:8px;background:#fff;padding:40px;">
      <h1 style="font-size:24px;color:#1f2937;text-align:center;">{heading}</h1>
      <p style="color:#374151;">Hello {username},</p>
      <p style="color:#374151;">{intro}</p>
      <p style="margin:16px 0;text-align:center;font-size:24px;font-weight:bold;letter-spacing:2px;">{code}</p>
      <p style="color:#374151;text-align:center;font-size:14px;">{instruction}</p>
      <p style="color:#374151;font-size:14px;">This code will expire in {expires_minutes} minutes.</p>
      <hr style="border-top:1px solid #d1d5db;margin:24px 0;">
      <p style="font-size:12px;color:#6b7280;text-align:center;">If you didn't request this, you can safely ignore this email.</p>
      <p style="font-size:12px;color:#6b7280;text-align:center;">&copy; {year} {product}. All rights reserved.</p>
    </div>
  </body>
</html>
""".strip()

OTP_DIGIT_TEMPLATE = (
    '<span style="display:inline-block;margin:0 4px;padding:8px 12px;'
    'border-radius:6px;background:#f3f4f6;border:1px solid #d1d5db;">{char}</span>'
)


def render_otp_email(
    username: str,
    otp: str,
    product_name: str,
    expires_minutes: int = 15,
    is_password_reset: bool = False,
) -> str:
    """Render the verification / password reset email body."""
    product = html.escape(product_name)
    if is_password_reset:
        preview = f"Reset your {product} password"
        heading = "Reset your password"
        intro = f"We received a request to reset your password for your {product} account."
        instruction = "Enter this code to reset your password."
    else:
        preview = f"Verify your {product} account"
        heading = "Verify your account"
        intro = (
            f"Thank you for registering with {product}. "
            "To complete your registration, please verify your email address."
        )
        instruction = "Enter this code to verify your account."

    return OTP_EMAIL_TEMPLATE.format(
        preview=preview,
        heading=heading,
        username=html.escape(username),
        intro=intro,
        code="".join(OTP_DIGIT_TEMPLATE.format(char=html.escape(c)) for c in otp),
        instruction=instruction,
        expires_minutes=expires_minutes,
        year=datetime.utcnow().year,
        product=product,
    )
