"""Signed-in account endpoints."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import desc, func, select

from ..db import AsyncSession, get_db
from ..db.accounts import Account
from ..db.mentions import Mention
from ..dependencies.auth import get_current_account
from ..services import accounts as account_service
from ..services.cache import CacheBackend, get_cache
from ..services.leaderboard import LeaderboardService
from ..services.scoring import reward_tier, round_half_up
from ..services.twitter_client import MentionSourceError, TwitterClient

router = APIRouter(prefix="/api/users", tags=["users"])

RECENT_MENTIONS = 5

_LINK_ERROR_STATUS = {
    account_service.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    account_service.ALREADY_LINKED: status.HTTP_409_CONFLICT,
    account_service.FAILED: status.HTTP_502_BAD_GATEWAY,
}


# ────────────────────────────────────────────────────────────────────────────────
# Models
# ────────────────────────────────────────────────────────────────────────────────


class MentionResponse(BaseModel):
    id: int
    tweet_id: str
    tweet_url: str
    content: str
    has_image: bool
    has_video: bool
    likes: int
    retweets: int
    replies: int
    quotes: int
    impressions: int
    quality_score: int
    points_awarded: int
    reward_tier: str
    created_at: datetime
    processed_at: datetime


class MentionListResponse(BaseModel):
    mentions: list[MentionResponse]
    total: int
    page: int
    limit: int


class ProfileResponse(BaseModel):
    id: int
    wallet_address: str
    username: str | None
    twitter_handle: str | None
    profile_image: str | None
    total_points: int
    joined_at: datetime
    last_active_at: datetime | None
    total_mentions: int
    average_score: int
    rank: int | None
    recent_mentions: list[MentionResponse]


class ProfileUpdateRequest(BaseModel):
    username: str = Field(..., min_length=2, max_length=50)


class LinkTwitterRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    twitter_username: str = Field(
        ...,
        alias="twitterUsername",
        min_length=1,
        max_length=account_service.MAX_HANDLE_LENGTH,
        pattern=account_service.HANDLE_PATTERN.pattern,
    )


class AccountResponse(BaseModel):
    id: int
    wallet_address: str
    username: str | None
    twitter_handle: str | None
    profile_image: str | None
    total_points: int


def _serialize_mention(mention: Mention) -> MentionResponse:
    return MentionResponse(
        id=mention.id,
        tweet_id=mention.tweet_id,
        tweet_url=mention.tweet_url,
        content=mention.content,
        has_image=mention.has_image,
        has_video=mention.has_video,
        likes=mention.likes,
        retweets=mention.retweets,
        replies=mention.replies,
        quotes=mention.quotes,
        impressions=mention.impressions,
        quality_score=mention.quality_score,
        points_awarded=mention.points_awarded,
        reward_tier=reward_tier(mention.quality_score).tier,
        created_at=mention.created_at,
        processed_at=mention.processed_at,
    )


def _serialize_account(account: Account) -> AccountResponse:
    return AccountResponse(
        id=account.id,
        wallet_address=account.wallet_address,
        username=account.username,
        twitter_handle=account.twitter_handle,
        profile_image=account.profile_image,
        total_points=account.total_points,
    )


async def get_link_client() -> TwitterClient:
    try:
        return TwitterClient()
    except MentionSourceError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to link Twitter account",
        ) from exc


# ────────────────────────────────────────────────────────────────────────────────
# Endpoints
# ────────────────────────────────────────────────────────────────────────────────


@router.get("/me", response_model=ProfileResponse)
async def get_profile(
    account: Account = Depends(get_current_account),
    session: AsyncSession = Depends(get_db),
    cache: CacheBackend = Depends(get_cache),
) -> ProfileResponse:
    count, average = (
        await session.execute(
            select(func.count(Mention.id), func.avg(Mention.quality_score)).where(
                Mention.account_id == account.id
            )
        )
    ).one()
    recent = await session.execute(
        select(Mention)
        .where(Mention.account_id == account.id)
        .order_by(desc(Mention.created_at))
        .limit(RECENT_MENTIONS)
    )
    rank = await LeaderboardService(session, cache).get_account_rank(account.id)

    return ProfileResponse(
        id=account.id,
        wallet_address=account.wallet_address,
        username=account.username,
        twitter_handle=account.twitter_handle,
        profile_image=account.profile_image,
        total_points=account.total_points,
        joined_at=account.joined_at,
        last_active_at=account.last_active_at,
        total_mentions=count or 0,
        average_score=round_half_up(float(average)) if average is not None else 0,
        rank=rank,
        recent_mentions=[_serialize_mention(m) for m in recent.scalars().all()],
    )


@router.patch("/me", response_model=AccountResponse)
async def update_profile(
    body: ProfileUpdateRequest,
    account: Account = Depends(get_current_account),
    session: AsyncSession = Depends(get_db),
) -> AccountResponse:
    account.username = body.username
    await session.commit()
    return _serialize_account(account)


@router.get("/me/mentions", response_model=MentionListResponse)
async def list_my_mentions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    account: Account = Depends(get_current_account),
    session: AsyncSession = Depends(get_db),
) -> MentionListResponse:
    total = await session.scalar(
        select(func.count(Mention.id)).where(Mention.account_id == account.id)
    )
    result = await session.execute(
        select(Mention)
        .where(Mention.account_id == account.id)
        .order_by(desc(Mention.created_at), desc(Mention.id))
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return MentionListResponse(
        mentions=[_serialize_mention(m) for m in result.scalars().all()],
        total=total or 0,
        page=page,
        limit=limit,
    )


@router.post("/me/twitter", response_model=AccountResponse)
async def link_twitter_account(
    body: LinkTwitterRequest,
    account: Account = Depends(get_current_account),
    session: AsyncSession = Depends(get_db),
    client: TwitterClient = Depends(get_link_client),
) -> AccountResponse:
    try:
        async with client:
            await account_service.link_twitter(session, account, body.twitter_username, client)
    except account_service.AccountLinkError as exc:
        raise HTTPException(status_code=_LINK_ERROR_STATUS[exc.reason], detail=exc.message) from exc
    await session.commit()
    return _serialize_account(account)


@router.delete("/me/twitter", response_model=AccountResponse)
async def unlink_twitter_account(
    account: Account = Depends(get_current_account),
    session: AsyncSession = Depends(get_db),
) -> AccountResponse:
    await account_service.unlink_twitter(session, account)
    await session.commit()
    return _serialize_account(account)
