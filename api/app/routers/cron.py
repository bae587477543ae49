"""Pull-mode ingestion triggered by the external scheduler."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy import desc, select

from ..config import settings
from ..db import AsyncSession, get_db
from ..db.runs import IngestionRun
from ..dependencies.auth import verify_cron_secret
from ..services.cache import CacheBackend, get_cache
from ..services.ingestion import run_pull
from ..services.job_runs import track_ingestion_run
from ..services.twitter_client import MentionSourceError, TwitterClient

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/cron",
    tags=["cron"],
    dependencies=[Depends(verify_cron_secret)],
)


class FetchMentionsResponse(BaseModel):
    success: bool = True
    run_id: int
    processed: int
    skipped: int
    errors: int
    total: int


class IngestionRunResponse(BaseModel):
    id: int
    trigger: str
    status: str
    started_at: datetime
    finished_at: datetime | None
    duration_seconds: float | None
    summary_data: dict[str, Any] | None
    error_summary: str | None


async def get_twitter_client() -> TwitterClient:
    try:
        return TwitterClient()
    except MentionSourceError as exc:
        logger.error("mention_source_not_configured", extra={"error": str(exc)})
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Mention source is not configured",
        ) from exc


@router.get("/fetch-mentions", response_model=FetchMentionsResponse)
async def fetch_mentions(
    session: AsyncSession = Depends(get_db),
    cache: CacheBackend = Depends(get_cache),
    client: TwitterClient = Depends(get_twitter_client),
) -> FetchMentionsResponse:
    """Fetch mentions since the watermark and ingest them."""
    try:
        async with client:
            async with track_ingestion_run(session, trigger="cron") as tracker:
                summary = await run_pull(
                    session, cache, client, settings.twitter_tracked_handle
                )
                tracker.update(summary.to_dict())
    except MentionSourceError as exc:
        logger.error("mention_pull_aborted", extra={"error": str(exc)})
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to fetch mentions",
        ) from exc

    return FetchMentionsResponse(run_id=tracker.run_id, **summary.to_dict())


@router.get("/runs", response_model=list[IngestionRunResponse])
async def list_ingestion_runs(
    limit: int = Query(20, ge=1, le=100),
    session: AsyncSession = Depends(get_db),
) -> list[IngestionRunResponse]:
    """Most recent pull runs, newest first."""
    result = await session.execute(
        select(IngestionRun).order_by(desc(IngestionRun.started_at), desc(IngestionRun.id)).limit(limit)
    )
    return [
        IngestionRunResponse(
            id=run.id,
            trigger=run.trigger,
            status=run.status,
            started_at=run.started_at,
            finished_at=run.finished_at,
            duration_seconds=run.duration_seconds,
            summary_data=run.summary_data,
            error_summary=run.error_summary,
        )
        for run in result.scalars().all()
    ]
