"""Two-layer record of processed external events.

The ``ingestion_events`` table is the ground truth. The cache key
``ingestion:processed:{event_type}:{external_id}`` is only written after the
durable record is committed as processed, so a cold or unavailable cache
costs latency and never correctness.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..db.dialect import upsert_insert
from ..db.mentions import MENTION_EVENT_TYPE, IngestionEvent
from ..utils.datetime_utils import now_utc
from .cache import CacheBackend, CacheError

logger = logging.getLogger(__name__)

PROCESSED_KEY_PREFIX = "ingestion:processed:"
MAX_ERROR_LENGTH = 2000


def processed_key(external_id: str, event_type: str = MENTION_EVENT_TYPE) -> str:
    return f"{PROCESSED_KEY_PREFIX}{event_type}:{external_id}"


class IdempotencyLedger:
    def __init__(
        self,
        session: AsyncSession,
        cache: CacheBackend,
        ttl_seconds: int | None = None,
    ) -> None:
        self.session = session
        self.cache = cache
        self.ttl_seconds = ttl_seconds or settings.processed_event_ttl_seconds

    async def is_processed(self, external_id: str, event_type: str = MENTION_EVENT_TYPE) -> bool:
        """Fast layer first, then the durable record; a durable hit re-warms the cache."""
        try:
            if await self.cache.get(processed_key(external_id, event_type)):
                return True
        except CacheError as exc:
            logger.info(
                "idempotency_cache_unavailable",
                extra={"external_id": external_id, "error": str(exc)},
            )

        result = await self.session.execute(
            select(IngestionEvent.processed).where(
                IngestionEvent.external_id == external_id,
                IngestionEvent.event_type == event_type,
            )
        )
        if result.scalar_one_or_none():
            await self.remember(external_id, event_type)
            return True
        return False

    async def begin(
        self,
        external_id: str,
        event_type: str = MENTION_EVENT_TYPE,
        source: str = "webhook",
        payload: dict[str, Any] | None = None,
    ) -> int:
        """Upsert the event in processing state and commit; returns its id.

        A repeat delivery of an unfinished event increments ``retry_count``
        and clears the previous error.
        """
        stmt = upsert_insert(self.session, IngestionEvent).values(
            external_id=external_id,
            event_type=event_type,
            source=source,
            payload=payload,
            processed=False,
            retry_count=0,
            received_at=now_utc(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["external_id", "event_type"],
            set_={
                "retry_count": IngestionEvent.retry_count + 1,
                "payload": stmt.excluded.payload,
                "error": None,
            },
        ).returning(IngestionEvent.id)
        result = await self.session.execute(stmt)
        event_id = result.scalar_one()
        await self.session.commit()
        return event_id

    async def stage_processed(self, event_id: int, outcome: str, overwrite: bool = True) -> None:
        """Mark processed inside the caller's open transaction.

        With ``overwrite=False`` an event already finalized by another handler
        keeps its outcome.
        """
        stmt = update(IngestionEvent).where(IngestionEvent.id == event_id)
        if not overwrite:
            stmt = stmt.where(IngestionEvent.processed.is_(False))
        await self.session.execute(
            stmt.values(processed=True, processed_at=now_utc(), outcome=outcome, error=None)
        )

    async def mark_processed(
        self,
        event_id: int,
        external_id: str,
        outcome: str,
        event_type: str = MENTION_EVENT_TYPE,
    ) -> None:
        await self.stage_processed(event_id, outcome)
        await self.session.commit()
        await self.remember(external_id, event_type)

    async def mark_failed(self, event_id: int, error: str) -> None:
        await self.session.execute(
            update(IngestionEvent)
            .where(IngestionEvent.id == event_id)
            .values(processed=False, error=error[:MAX_ERROR_LENGTH])
        )
        await self.session.commit()

    async def remember(self, external_id: str, event_type: str = MENTION_EVENT_TYPE) -> None:
        try:
            await self.cache.set(processed_key(external_id, event_type), "1", ttl=self.ttl_seconds)
        except CacheError as exc:
            logger.info(
                "idempotency_cache_write_skipped",
                extra={"external_id": external_id, "error": str(exc)},
            )
