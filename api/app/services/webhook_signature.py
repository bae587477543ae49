"""HMAC helpers for the push-mode webhook."""

from __future__ import annotations

import base64
import hashlib
import hmac


def crc_response_token(secret: str, crc_token: str) -> str:
    """Answer a CRC challenge: ``sha256=`` + base64(HMAC-SHA256(secret, token))."""
    digest = hmac.new(secret.encode("utf-8"), crc_token.encode("utf-8"), hashlib.sha256).digest()
    return "sha256=" + base64.b64encode(digest).decode("ascii")


def compute_webhook_signature(secret: str, timestamp: str, body: bytes) -> str:
    message = timestamp.encode("utf-8") + b"." + body
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_webhook_signature(secret: str, timestamp: str, body: bytes, signature: str) -> bool:
    """Constant-time check of the hex signature header.

    Header values arrive latin-1 decoded, so both sides are compared as bytes;
    a header with non-ASCII characters simply fails to match.
    """
    expected = compute_webhook_signature(secret, timestamp, body)
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("latin-1", "replace"))
