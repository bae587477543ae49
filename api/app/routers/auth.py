"""Wallet sign-in endpoints."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from ..config import settings
from ..db import AsyncSession, get_db
from ..services.auth_tokens import create_access_token
from ..services.cache import CacheBackend, get_cache
from ..services.nonce_store import NonceStore, build_sign_in_message
from ..services.wallet_auth import AuthenticationError, authenticate_wallet

router = APIRouter(prefix="/api/auth", tags=["auth"])


# ────────────────────────────────────────────────────────────────────────────────
# Models
# ────────────────────────────────────────────────────────────────────────────────


class NonceResponse(BaseModel):
    nonce: str
    message: str


class VerifyRequest(BaseModel):
    """Signed sign-in message; every field is checked by the endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    public_key: str | None = Field(None, alias="publicKey")
    signature: str | None = None
    message: str | None = None


class AccountSummary(BaseModel):
    id: int
    wallet_address: str
    username: str | None
    twitter_handle: str | None
    total_points: int
    joined_at: datetime


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    is_new_account: bool
    account: AccountSummary


def get_nonce_store(cache: CacheBackend = Depends(get_cache)) -> NonceStore:
    return NonceStore(
        cache,
        ttl_seconds=settings.nonce_ttl_seconds,
        used_ttl_seconds=settings.used_nonce_ttl_seconds,
    )


# ────────────────────────────────────────────────────────────────────────────────
# Endpoints
# ────────────────────────────────────────────────────────────────────────────────


@router.get("/nonce", response_model=NonceResponse)
async def issue_nonce(nonces: NonceStore = Depends(get_nonce_store)) -> NonceResponse:
    """Issue a single-use nonce and the message the wallet should sign."""
    nonce = await nonces.issue()
    return NonceResponse(nonce=nonce, message=build_sign_in_message(nonce))


@router.post("/verify", response_model=TokenResponse)
async def verify_wallet(
    body: VerifyRequest,
    session: AsyncSession = Depends(get_db),
    nonces: NonceStore = Depends(get_nonce_store),
) -> TokenResponse:
    """Exchange a signed nonce message for a bearer token."""
    try:
        account, created = await authenticate_wallet(
            session,
            nonces,
            wallet_address=body.public_key or "",
            signature=body.signature or "",
            message=body.message or "",
        )
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.message,
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc

    await session.commit()
    return TokenResponse(
        access_token=create_access_token(account.id, account.wallet_address),
        expires_in=settings.jwt_expire_minutes * 60,
        is_new_account=created,
        account=AccountSummary(
            id=account.id,
            wallet_address=account.wallet_address,
            username=account.username,
            twitter_handle=account.twitter_handle,
            total_points=account.total_points,
            joined_at=account.joined_at,
        ),
    )
