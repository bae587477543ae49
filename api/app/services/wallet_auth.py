"""Wallet sign-in: signature check, nonce consumption, account lookup."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.accounts import Account
from ..utils.datetime_utils import now_utc
from .nonce_store import NonceStore, extract_nonce
from .signature import verify_wallet_signature

logger = logging.getLogger(__name__)


MISSING_CREDENTIALS = "missing_credentials"
INVALID_SIGNATURE = "invalid_signature"
INVALID_NONCE = "invalid_nonce"


class AuthenticationError(Exception):
    """Sign-in rejected; ``reason`` is one of the module-level reason codes."""

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message


async def authenticate_wallet(
    session: AsyncSession,
    nonces: NonceStore,
    wallet_address: str,
    signature: str,
    message: str,
) -> tuple[Account, bool]:
    """Verify a signed sign-in message and return ``(account, created)``.

    The signature is checked before the nonce is consumed, so a forged
    request cannot burn a legitimate user's nonce.
    """
    if not wallet_address or not signature or not message:
        raise AuthenticationError(MISSING_CREDENTIALS, "Missing credentials")

    if not verify_wallet_signature(wallet_address, signature, message):
        logger.warning("wallet_signature_invalid", extra={"wallet_address": wallet_address})
        raise AuthenticationError(INVALID_SIGNATURE, "Invalid signature")

    nonce = extract_nonce(message)
    if nonce is None or not await nonces.consume(nonce):
        logger.warning("wallet_nonce_rejected", extra={"wallet_address": wallet_address})
        raise AuthenticationError(INVALID_NONCE, "Invalid or expired nonce")

    normalized = wallet_address.lower()
    result = await session.execute(select(Account).where(Account.wallet_address == normalized))
    account = result.scalar_one_or_none()
    created = False
    if account is None:
        account = Account(wallet_address=normalized, is_verified=True)
        session.add(account)
        created = True
    account.last_active_at = now_utc()
    await session.flush()

    logger.info(
        "wallet_authenticated",
        extra={"account_id": account.id, "wallet_address": normalized, "new_account": created},
    )
    return account, created
