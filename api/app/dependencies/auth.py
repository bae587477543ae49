"""Authentication dependencies: scheduler bearer secret and account tokens."""

from __future__ import annotations

import logging
import secrets

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.config import settings
from app.db import AsyncSession, get_db
from app.db.accounts import Account
from app.services.auth_tokens import InvalidTokenError, decode_access_token

logger = logging.getLogger(__name__)

BEARER_SCHEME = HTTPBearer(auto_error=False)


def _client_context(request: Request) -> dict[str, str]:
    return {
        "client_ip": request.client.host if request.client else "unknown",
        "path": request.url.path,
    }


async def verify_cron_secret(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(BEARER_SCHEME),
) -> None:
    """Validate the scheduler's ``Authorization: Bearer <CRON_SECRET>`` header.

    Uses constant-time comparison. When CRON_SECRET is not configured the
    endpoint is open; config validation prevents that outside development.

    Raises:
        HTTPException: 401 if the credential is missing or wrong.
    """
    if not settings.cron_secret:
        logger.warning(
            "CRON_SECRET not configured - cron endpoint is unprotected",
            extra=_client_context(request),
        )
        return

    if credentials is None or not secrets.compare_digest(
        credentials.credentials, settings.cron_secret
    ):
        logger.warning("Unauthorized cron request", extra=_client_context(request))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_current_account(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(BEARER_SCHEME),
    session: AsyncSession = Depends(get_db),
) -> Account:
    """Resolve the signed-in account from its bearer token.

    Raises:
        HTTPException: 401 if the token is missing, invalid, expired, or
            names an account that no longer exists.
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = decode_access_token(credentials.credentials)
        account_id = int(payload["sub"])
    except (InvalidTokenError, ValueError) as exc:
        logger.warning("Invalid access token", extra={**_client_context(request), "error": str(exc)})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc

    account = await session.get(Account, account_id)
    if account is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account not found",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return account
