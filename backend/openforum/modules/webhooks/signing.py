"""
Webhook payload signing.

Deliveries carry X-Forum-Signature: hex HMAC-SHA256(secret, raw body).
"""

import hashlib
import hmac

from loguru import logger


def sign_payload(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw body."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """
    Check a delivery signature, for receivers.

    Args:
        body: Raw request body bytes
        signature: X-Forum-Signature header value
        secret: Shared webhook secret

    Returns:
        True if the signature matches
    """
    if not signature:
        logger.warning("Missing X-Forum-Signature header")
        return False

    # Constant-time comparison
    is_valid = hmac.compare_digest(signature, sign_payload(body, secret))
    if not is_valid:
        logger.warning("Webhook signature verification failed")
    return is_valid
