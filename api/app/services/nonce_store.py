"""Single-use sign-in nonces.

Issued nonces live under ``nonce:pending:{nonce}`` until they expire or are
consumed. Consumption deletes the pending key and records
``nonce:used:{nonce}``, so a nonce succeeds at most once even under
concurrent requests: only the caller whose DELETE removed the key wins.
"""

from __future__ import annotations

import logging
import re
import secrets

from .cache import CacheBackend, CacheError

logger = logging.getLogger(__name__)

PENDING_PREFIX = "nonce:pending:"
USED_PREFIX = "nonce:used:"

NONCE_PATTERN = re.compile(r"nonce: ([a-z0-9]+)", re.IGNORECASE)


def extract_nonce(message: str) -> str | None:
    """Pull the ``Nonce: <token>`` value out of a signed sign-in message."""
    match = NONCE_PATTERN.search(message)
    return match.group(1) if match else None


def build_sign_in_message(nonce: str) -> str:
    return (
        "Sign this message to join the Cult of Trogdor.\n\n"
        f"Nonce: {nonce}\n\n"
        "This request will not trigger a blockchain transaction or cost any fees."
    )


class NonceStore:
    def __init__(self, cache: CacheBackend, ttl_seconds: int, used_ttl_seconds: int) -> None:
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.used_ttl_seconds = used_ttl_seconds

    async def issue(self) -> str:
        nonce = secrets.token_hex(16)
        try:
            await self.cache.set(f"{PENDING_PREFIX}{nonce}", "1", ttl=self.ttl_seconds)
        except CacheError as exc:
            logger.warning("nonce_store_unavailable", extra={"error": str(exc)})
        return nonce

    async def consume(self, nonce: str) -> bool:
        """Atomically mark *nonce* used; True only for the first valid use.

        When the cache is unavailable the check is skipped and the sign-in
        proceeds on signature verification alone.
        """
        try:
            removed = await self.cache.delete(f"{PENDING_PREFIX}{nonce}")
            if removed != 1:
                return False
            await self.cache.set(f"{USED_PREFIX}{nonce}", "1", ttl=self.used_ttl_seconds)
            return True
        except CacheError as exc:
            logger.warning("nonce_check_skipped", extra={"error": str(exc)})
            return True
