"""
Webhook Security Module

Signature and token verification for the WhatsApp and Asaas webhook endpoints.
All comparisons run in constant time.
"""

import hashlib
import hmac
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class WebhookSignatureError(Exception):
    """Raised when webhook signature verification fails"""

    pass


def constant_time_compare(a: Optional[str], b: Optional[str]) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Uses hmac.compare_digest which is designed for this purpose.
    """
    if not a or not b:
        return False
    return hmac.compare_digest(a, b)


def compute_hmac_sha256(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA256 signature of payload"""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_whatsapp_signature(payload: bytes, signature_header: Optional[str], app_secret: Optional[str]) -> None:
    """
    Verify Meta's X-Hub-Signature-256 header ("sha256=<hex>").

    Verification is skipped (with a warning) when no app secret is configured.

    Raises:
        WebhookSignatureError: If the header is missing or does not match
    """
    if not app_secret:
        logger.warning("⚠️ WHATSAPP_APP_SECRET not configured - skipping signature verification")
        return

    if not signature_header or not signature_header.startswith("sha256="):
        logger.warning("🚫 Missing or malformed X-Hub-Signature-256 header")
        raise WebhookSignatureError("Missing signature")

    expected = compute_hmac_sha256(app_secret, payload)
    if not constant_time_compare(signature_header[len("sha256="):], expected):
        logger.warning("🚫 Invalid WhatsApp webhook signature")
        raise WebhookSignatureError("Invalid signature")


def verify_asaas_token(token_header: Optional[str], expected_token: Optional[str]) -> None:
    """
    Verify the asaas-access-token header configured on the Asaas webhook.

    Raises:
        WebhookSignatureError: If the token is missing or does not match
    """
    if not expected_token:
        logger.warning("⚠️ ASAAS_WEBHOOK_TOKEN not configured - skipping token verification")
        return

    if not constant_time_compare(token_header, expected_token):
        logger.warning("🚫 Invalid Asaas webhook token")
        raise WebhookSignatureError("Invalid token")
