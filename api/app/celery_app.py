"""Celery application for scheduled ingestion and snapshots."""

from celery import Celery
from celery.schedules import crontab

from app.config import settings

celery_app = Celery(
    "cult_of_trogdor",
    broker=settings.celery_broker,
    backend=settings.celery_backend,
    include=["app.tasks.mention_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=600,
    task_soft_time_limit=540,
    result_expires=86400,
    beat_schedule={
        "fetch-mentions": {
            "task": "app.tasks.mention_tasks.fetch_mentions_task",
            "schedule": settings.fetch_mentions_interval_minutes * 60.0,
        },
        "leaderboard-snapshots": {
            "task": "app.tasks.mention_tasks.snapshot_leaderboards_task",
            "schedule": crontab(hour=0, minute=5),
        },
    },
)
