"""Ed25519 wallet signature verification.

Wallet addresses are base58-encoded 32-byte public keys. Signatures arrive
either as raw bytes or base58 text and are detached 64-byte signatures over
the UTF-8 message bytes.
"""

from __future__ import annotations

import logging

import base58
from nacl.exceptions import BadSignatureError, CryptoError
from nacl.signing import VerifyKey

logger = logging.getLogger(__name__)

PUBLIC_KEY_LENGTH = 32
SIGNATURE_LENGTH = 64


def verify_wallet_signature(
    wallet_address: str, signature: str | bytes, message: str
) -> bool:
    """Return True only if *signature* is a valid signature of *message* by the wallet.

    Any decoding failure, wrong length, or cryptographic mismatch yields False.
    """
    try:
        public_key = base58.b58decode(wallet_address)
        if isinstance(signature, (bytes, bytearray)):
            signature_bytes = bytes(signature)
        else:
            signature_bytes = base58.b58decode(signature)
    except (ValueError, TypeError):
        return False

    if len(public_key) != PUBLIC_KEY_LENGTH or len(signature_bytes) != SIGNATURE_LENGTH:
        return False

    try:
        VerifyKey(public_key).verify(message.encode("utf-8"), signature_bytes)
    except (BadSignatureError, CryptoError, ValueError, TypeError):
        logger.debug("wallet_signature_rejected", extra={"wallet_address": wallet_address})
        return False
    return True
