"""Session tokens issued after wallet sign-in."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from jose import JWTError, jwt

from ..config import settings
from ..utils.datetime_utils import now_utc


class InvalidTokenError(Exception):
    """Token is malformed, expired, or signed with another key."""


def create_access_token(
    account_id: int,
    wallet_address: str,
    expires_delta: timedelta | None = None,
) -> str:
    expire = now_utc() + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    claims: dict[str, Any] = {
        "sub": str(account_id),
        "wallet": wallet_address,
        "exp": expire,
        "iat": now_utc(),
    }
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any]:
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise InvalidTokenError(str(exc)) from exc
    if not payload.get("sub"):
        raise InvalidTokenError("Token has no subject")
    return payload
