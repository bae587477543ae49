"""Global community stats."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import func, select

from ..config import settings
from ..db import AsyncSession, get_db
from ..db.accounts import Account
from ..db.mentions import Mention
from ..services.cache import CacheBackend, CacheError, get_cache

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stats", tags=["stats"])

STATS_CACHE_KEY = "stats:global"


class GlobalStatsResponse(BaseModel):
    total_members: int
    total_points: int
    total_mentions: int


@router.get("", response_model=GlobalStatsResponse)
async def get_global_stats(
    session: AsyncSession = Depends(get_db),
    cache: CacheBackend = Depends(get_cache),
) -> GlobalStatsResponse:
    try:
        cached = await cache.get(STATS_CACHE_KEY)
    except CacheError as exc:
        logger.info("stats_cache_unavailable", extra={"error": str(exc)})
        cached = None
    if cached:
        return GlobalStatsResponse(**json.loads(cached))

    members, points = (
        await session.execute(
            select(func.count(Account.id), func.coalesce(func.sum(Account.total_points), 0))
        )
    ).one()
    mentions = await session.scalar(select(func.count(Mention.id)))
    stats = GlobalStatsResponse(
        total_members=members or 0,
        total_points=points or 0,
        total_mentions=mentions or 0,
    )

    try:
        await cache.set(
            STATS_CACHE_KEY, stats.model_dump_json(), ttl=settings.stats_cache_ttl_seconds
        )
    except CacheError as exc:
        logger.info("stats_cache_write_skipped", extra={"error": str(exc)})
    return stats
