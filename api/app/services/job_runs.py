"""Helpers for recording pull-mode ingestion runs."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from ..db.runs import IngestionRun
from ..utils.datetime_utils import ensure_utc, now_utc

logger = logging.getLogger(__name__)


class RunTracker:
    """Mutable tracker for accumulating summary data during a run."""

    def __init__(self, run_id: int) -> None:
        self.run_id = run_id
        self.summary_data: dict[str, Any] = {}

    def update(self, values: dict[str, Any]) -> None:
        self.summary_data.update(values)


async def start_ingestion_run(
    session: AsyncSession,
    trigger: str,
    celery_task_id: str | None = None,
) -> int:
    """Create a run record, commit it, and return its ID."""
    run = IngestionRun(
        trigger=trigger,
        status="running",
        started_at=now_utc(),
        celery_task_id=celery_task_id,
    )
    session.add(run)
    await session.commit()
    logger.info("ingestion_run_started", extra={"run_id": run.id, "trigger": trigger})
    return run.id


async def complete_ingestion_run(
    session: AsyncSession,
    run_id: int,
    status: str,
    error_summary: str | None = None,
    summary_data: dict[str, Any] | None = None,
) -> None:
    """Finalize a run record with status and duration."""
    run = await session.get(IngestionRun, run_id)
    if run is None:
        logger.error("ingestion_run_missing", extra={"run_id": run_id})
        return
    finished_at = now_utc()
    run.status = status
    run.finished_at = finished_at
    run.duration_seconds = (finished_at - ensure_utc(run.started_at)).total_seconds()
    run.error_summary = error_summary
    if summary_data is not None:
        run.summary_data = summary_data
    await session.commit()
    logger.info(
        "ingestion_run_completed",
        extra={"run_id": run_id, "status": status, "duration_seconds": run.duration_seconds},
    )


@asynccontextmanager
async def track_ingestion_run(
    session: AsyncSession,
    trigger: str,
    celery_task_id: str | None = None,
) -> AsyncGenerator[RunTracker, None]:
    """Create a run on enter and finalize it on exit.

    On normal exit: status="success" with the tracker's summary.
    On exception: status="error" with the exception text, then re-raise.
    """
    run_id = await start_ingestion_run(session, trigger, celery_task_id=celery_task_id)
    tracker = RunTracker(run_id)
    try:
        yield tracker
    except Exception as exc:
        await session.rollback()
        await complete_ingestion_run(
            session,
            run_id,
            status="error",
            error_summary=str(exc)[:500],
            summary_data=tracker.summary_data or None,
        )
        raise
    else:
        await complete_ingestion_run(
            session,
            run_id,
            status="success",
            summary_data=tracker.summary_data or None,
        )
