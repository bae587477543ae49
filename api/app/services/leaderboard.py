"""Ranked leaderboard reads with a generation-keyed cache.

All-time rankings read the running ``Account.total_points``. Monthly, weekly
and daily rankings sum ``Mention.points_awarded`` over mentions whose
platform timestamp falls in the current UTC calendar window, so only
accounts with mentions in the window appear.

Ties are broken by ascending account id (creation order). Cached pages are
keyed by ``leaderboard:generation``; bumping the generation on ingest makes
every previously cached page unreachable at once.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..db.accounts import Account
from ..db.leaderboard import LeaderboardSnapshot
from ..db.mentions import Mention
from ..utils.datetime_utils import day_window, month_window, now_utc, week_window
from .cache import CacheBackend, CacheError
from .scoring import round_half_up

logger = logging.getLogger(__name__)

GENERATION_KEY = "leaderboard:generation"
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


class LeaderboardPeriod(str, Enum):
    ALLTIME = "alltime"
    MONTHLY = "monthly"
    WEEKLY = "weekly"
    DAILY = "daily"


_WINDOWS = {
    LeaderboardPeriod.MONTHLY: month_window,
    LeaderboardPeriod.WEEKLY: week_window,
    LeaderboardPeriod.DAILY: day_window,
}


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    account_id: int
    wallet_address: str
    username: str | None
    twitter_handle: str | None
    profile_image: str | None
    total_points: int
    total_mentions: int
    average_quality: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LeaderboardEntry":
        return cls(**data)


def period_window(
    period: LeaderboardPeriod, now: datetime | None = None
) -> tuple[datetime, datetime] | None:
    """Return ``(start, end)`` for windowed periods, None for all-time."""
    window = _WINDOWS.get(period)
    return window(now or now_utc()) if window else None


def clamp_page(page: int, page_size: int) -> tuple[int, int]:
    return max(1, page), max(1, min(MAX_PAGE_SIZE, page_size))


class LeaderboardService:
    def __init__(
        self,
        session: AsyncSession,
        cache: CacheBackend,
        ttl_seconds: int | None = None,
    ) -> None:
        self.session = session
        self.cache = cache
        self.ttl_seconds = ttl_seconds or settings.leaderboard_cache_ttl_seconds

    async def _generation(self) -> str | None:
        try:
            return await self.cache.get(GENERATION_KEY) or "0"
        except CacheError as exc:
            logger.info("leaderboard_cache_unavailable", extra={"error": str(exc)})
            return None

    async def get_ranked(
        self,
        period: LeaderboardPeriod = LeaderboardPeriod.ALLTIME,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
        now: datetime | None = None,
    ) -> list[LeaderboardEntry]:
        page, page_size = clamp_page(page, page_size)
        generation = await self._generation()
        cache_key = None
        if generation is not None:
            cache_key = f"leaderboard:{generation}:{period.value}:{page}:{page_size}"
            try:
                cached = await self.cache.get(cache_key)
            except CacheError:
                cached = None
            if cached:
                return [LeaderboardEntry.from_dict(item) for item in json.loads(cached)]

        entries = await self._query(period, (page - 1) * page_size, page_size, now)

        if cache_key is not None:
            try:
                await self.cache.set(
                    cache_key,
                    json.dumps([entry.to_dict() for entry in entries]),
                    ttl=self.ttl_seconds,
                )
            except CacheError as exc:
                logger.info("leaderboard_cache_write_skipped", extra={"error": str(exc)})
        return entries

    async def _query(
        self,
        period: LeaderboardPeriod,
        offset: int,
        limit: int | None,
        now: datetime | None = None,
    ) -> list[LeaderboardEntry]:
        window = period_window(period, now)
        if window is None:
            stats = (
                select(
                    Mention.account_id.label("account_id"),
                    func.count(Mention.id).label("mention_count"),
                    func.avg(Mention.quality_score).label("avg_quality"),
                )
                .group_by(Mention.account_id)
                .subquery()
            )
            points = Account.total_points
            stmt = select(
                Account, points, stats.c.mention_count, stats.c.avg_quality
            ).outerjoin(stats, stats.c.account_id == Account.id)
        else:
            start, end = window
            stats = (
                select(
                    Mention.account_id.label("account_id"),
                    func.sum(Mention.points_awarded).label("points"),
                    func.count(Mention.id).label("mention_count"),
                    func.avg(Mention.quality_score).label("avg_quality"),
                )
                .where(Mention.created_at >= start, Mention.created_at < end)
                .group_by(Mention.account_id)
                .subquery()
            )
            points = stats.c.points
            stmt = select(
                Account, points, stats.c.mention_count, stats.c.avg_quality
            ).join(stats, stats.c.account_id == Account.id)

        stmt = stmt.order_by(points.desc(), Account.id.asc()).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)

        result = await self.session.execute(stmt)
        return [
            LeaderboardEntry(
                rank=offset + position + 1,
                account_id=account.id,
                wallet_address=account.wallet_address,
                username=account.username,
                twitter_handle=account.twitter_handle,
                profile_image=account.profile_image,
                total_points=int(total or 0),
                total_mentions=int(mention_count or 0),
                average_quality=round_half_up(float(avg_quality)) if avg_quality is not None else 0,
            )
            for position, (account, total, mention_count, avg_quality) in enumerate(result.all())
        ]

    async def invalidate(self) -> None:
        try:
            await self.cache.incr(GENERATION_KEY)
        except CacheError as exc:
            logger.warning("leaderboard_invalidation_failed", extra={"error": str(exc)})

    async def get_account_rank(self, account_id: int) -> int | None:
        """All-time rank: one plus the number of accounts with strictly more points."""
        points = await self.session.scalar(
            select(Account.total_points).where(Account.id == account_id)
        )
        if points is None:
            return None
        ahead = await self.session.scalar(
            select(func.count()).select_from(Account).where(Account.total_points > points)
        )
        return int(ahead or 0) + 1

    async def snapshot(
        self, period: LeaderboardPeriod, now: datetime | None = None
    ) -> int:
        """Persist the full current ranking for *period*; returns rows written."""
        now = now or now_utc()
        entries = await self._query(period, 0, None, now)
        window = period_window(period, now)
        period_start, period_end = window if window else (None, None)
        self.session.add_all(
            [
                LeaderboardSnapshot(
                    account_id=entry.account_id,
                    period=period.value,
                    rank=entry.rank,
                    total_points=entry.total_points,
                    total_mentions=entry.total_mentions,
                    average_quality=entry.average_quality,
                    period_start=period_start,
                    period_end=period_end,
                    snapshot_at=now,
                )
                for entry in entries
            ]
        )
        await self.session.flush()
        logger.info(
            "leaderboard_snapshot_written",
            extra={"period": period.value, "entries": len(entries)},
        )
        return len(entries)
