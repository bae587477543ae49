"""Background tasks for pull-mode ingestion and leaderboard snapshots."""

import asyncio
import logging
from typing import Any

from app.celery_app import celery_app
from app.config import settings
from app.db import close_db, get_async_session
from app.services.cache import build_cache
from app.services.ingestion import run_pull
from app.services.job_runs import track_ingestion_run
from app.services.leaderboard import LeaderboardPeriod, LeaderboardService
from app.services.twitter_client import TwitterClient

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="app.tasks.mention_tasks.fetch_mentions_task")
def fetch_mentions_task(self) -> dict[str, Any]:
    """Scheduled pull of new mentions of the tracked handle."""
    return asyncio.run(_fetch_mentions_async(self.request.id))


async def _fetch_mentions_async(task_id: str | None) -> dict[str, Any]:
    cache = build_cache(settings.redis_url)
    try:
        async with TwitterClient() as client, get_async_session() as session:
            async with track_ingestion_run(
                session, trigger="celery", celery_task_id=task_id
            ) as tracker:
                summary = await run_pull(session, cache, client, settings.twitter_tracked_handle)
                tracker.update(summary.to_dict())
        return {"run_id": tracker.run_id, **summary.to_dict()}
    finally:
        await cache.close()
        await close_db()


@celery_app.task(name="app.tasks.mention_tasks.snapshot_leaderboards_task")
def snapshot_leaderboards_task() -> dict[str, int]:
    """Archive the current ranking for every period."""
    return asyncio.run(_snapshot_async())


async def _snapshot_async() -> dict[str, int]:
    cache = build_cache(settings.redis_url)
    written: dict[str, int] = {}
    try:
        async with get_async_session() as session:
            service = LeaderboardService(session, cache)
            for period in LeaderboardPeriod:
                written[period.value] = await service.snapshot(period)
        logger.info("leaderboard_snapshots_completed", extra={"written": written})
        return written
    finally:
        await cache.close()
        await close_db()
