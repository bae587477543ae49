"""Leaderboard read endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from ..db import AsyncSession, get_db
from ..services.cache import CacheBackend, get_cache
from ..services.leaderboard import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    LeaderboardPeriod,
    LeaderboardService,
)

router = APIRouter(prefix="/api/leaderboard", tags=["leaderboard"])

TOP_LIMIT = 10


class LeaderboardEntryResponse(BaseModel):
    rank: int
    account_id: int
    wallet_address: str
    username: str | None
    twitter_handle: str | None
    profile_image: str | None
    total_points: int
    total_mentions: int
    average_quality: int


class LeaderboardResponse(BaseModel):
    period: LeaderboardPeriod
    page: int
    limit: int
    entries: list[LeaderboardEntryResponse]


def get_leaderboard_service(
    session: AsyncSession = Depends(get_db),
    cache: CacheBackend = Depends(get_cache),
) -> LeaderboardService:
    return LeaderboardService(session, cache)


@router.get("", response_model=LeaderboardResponse)
async def get_leaderboard(
    period: LeaderboardPeriod = Query(LeaderboardPeriod.ALLTIME),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    service: LeaderboardService = Depends(get_leaderboard_service),
) -> LeaderboardResponse:
    entries = await service.get_ranked(period, page, limit)
    return LeaderboardResponse(
        period=period,
        page=page,
        limit=limit,
        entries=[LeaderboardEntryResponse(**entry.to_dict()) for entry in entries],
    )


@router.get("/top", response_model=list[LeaderboardEntryResponse])
async def get_top_cultists(
    service: LeaderboardService = Depends(get_leaderboard_service),
) -> list[LeaderboardEntryResponse]:
    """Top ten all-time, for the landing page preview."""
    entries = await service.get_ranked(LeaderboardPeriod.ALLTIME, 1, TOP_LIMIT)
    return [LeaderboardEntryResponse(**entry.to_dict()) for entry in entries]
