"""Idempotent mention ingestion shared by webhook push and scheduled pull.

For each candidate the order is: ledger check, upsert the ingestion event,
resolve the owner by platform id, score, then insert the mention and credit
the account in one transaction together with marking the event processed.
A mention row and its point increment therefore either both exist or
neither does.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.accounts import Account
from ..db.dialect import upsert_insert
from ..db.mentions import MENTION_EVENT_TYPE, Mention
from ..utils.datetime_utils import now_utc, to_unix_seconds
from .cache import CacheBackend
from .idempotency import IdempotencyLedger
from .leaderboard import LeaderboardService
from .mention_payload import MentionPayloadError, NormalizedMention, normalize_mention
from .scoring import calculate_quality_score
from .twitter_client import TwitterClient

logger = logging.getLogger(__name__)

PROCESSED = "processed"
DUPLICATE = "duplicate"
OWNER_NOT_FOUND = "owner_not_found"

SOURCE_WEBHOOK = "webhook"
SOURCE_PULL = "pull"


class MentionProcessingError(RuntimeError):
    """Unexpected failure while applying a mention; the event stays retryable."""

    def __init__(self, tweet_id: str, message: str) -> None:
        super().__init__(message)
        self.tweet_id = tweet_id


@dataclass(frozen=True)
class IngestionResult:
    status: str
    tweet_id: str
    mention_id: int | None = None
    account_id: int | None = None
    score: int | None = None

    @property
    def credited(self) -> bool:
        return self.status == PROCESSED


@dataclass
class PullSummary:
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    total: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class MentionIngestor:
    def __init__(self, session: AsyncSession, cache: CacheBackend) -> None:
        self.session = session
        self.cache = cache
        self.ledger = IdempotencyLedger(session, cache)

    async def ingest(
        self,
        mention: NormalizedMention,
        source: str = SOURCE_WEBHOOK,
        payload: dict[str, Any] | None = None,
    ) -> IngestionResult:
        try:
            if await self.ledger.is_processed(mention.tweet_id, MENTION_EVENT_TYPE):
                logger.info("mention_already_processed", extra={"tweet_id": mention.tweet_id})
                return IngestionResult(status=DUPLICATE, tweet_id=mention.tweet_id)

            event_id = await self.ledger.begin(
                mention.tweet_id, MENTION_EVENT_TYPE, source=source, payload=payload
            )
        except Exception as exc:
            # No event row to mark; the next delivery or pull starts over.
            await self.session.rollback()
            logger.exception(
                "mention_ledger_unavailable",
                extra={"tweet_id": mention.tweet_id, "source": source},
            )
            raise MentionProcessingError(
                mention.tweet_id, f"Failed to process mention {mention.tweet_id}"
            ) from exc

        try:
            result = await self._apply(event_id, mention)
        except Exception as exc:
            await self.session.rollback()
            logger.exception(
                "mention_ingestion_failed",
                extra={"tweet_id": mention.tweet_id, "event_id": event_id, "source": source},
            )
            await self._record_failure(event_id, exc)
            raise MentionProcessingError(
                mention.tweet_id, f"Failed to process mention {mention.tweet_id}"
            ) from exc

        await self.ledger.remember(mention.tweet_id, MENTION_EVENT_TYPE)
        if result.credited:
            await LeaderboardService(self.session, self.cache).invalidate()
        logger.info(
            "mention_ingested",
            extra={
                "tweet_id": mention.tweet_id,
                "status": result.status,
                "account_id": result.account_id,
                "score": result.score,
                "source": source,
            },
        )
        return result

    async def _record_failure(self, event_id: int, exc: Exception) -> None:
        try:
            await self.ledger.mark_failed(event_id, f"{type(exc).__name__}: {exc}")
        except SQLAlchemyError:
            await self.session.rollback()
            logger.exception("mention_failure_not_recorded", extra={"event_id": event_id})

    async def _finish(self, event_id: int, result: IngestionResult) -> IngestionResult:
        # A handler that lost a race must not overwrite the winner's outcome.
        await self.ledger.stage_processed(
            event_id, result.status, overwrite=result.credited
        )
        await self.session.commit()
        return result

    async def _apply(self, event_id: int, mention: NormalizedMention) -> IngestionResult:
        account_id = None
        if mention.author_id:
            account_id = await self.session.scalar(
                select(Account.id).where(Account.twitter_id == mention.author_id)
            )
        if account_id is None:
            return await self._finish(
                event_id, IngestionResult(status=OWNER_NOT_FOUND, tweet_id=mention.tweet_id)
            )

        existing_id = await self.session.scalar(
            select(Mention.id).where(Mention.tweet_id == mention.tweet_id)
        )
        if existing_id is not None:
            return await self._finish(
                event_id,
                IngestionResult(
                    status=DUPLICATE,
                    tweet_id=mention.tweet_id,
                    mention_id=existing_id,
                    account_id=account_id,
                ),
            )

        score = calculate_quality_score(mention.metrics())
        insert_stmt = (
            upsert_insert(self.session, Mention)
            .values(
                tweet_id=mention.tweet_id,
                account_id=account_id,
                tweet_url=mention.tweet_url,
                content=mention.text,
                has_image=mention.has_image,
                has_video=mention.has_video,
                likes=mention.likes,
                retweets=mention.retweets,
                replies=mention.replies,
                quotes=mention.quotes,
                impressions=mention.impressions,
                quality_score=score.total,
                points_awarded=score.total,
                score_breakdown=score.breakdown.to_dict(),
                created_at=mention.created_at,
                processed_at=now_utc(),
            )
            .on_conflict_do_nothing(index_elements=["tweet_id"])
            .returning(Mention.id)
        )
        mention_id = (await self.session.execute(insert_stmt)).scalar_one_or_none()
        if mention_id is None:
            # Lost an insert race to a concurrent delivery of the same tweet.
            return await self._finish(
                event_id,
                IngestionResult(status=DUPLICATE, tweet_id=mention.tweet_id, account_id=account_id),
            )

        await self.session.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(
                total_points=Account.total_points + score.total,
                last_active_at=now_utc(),
            )
        )
        return await self._finish(
            event_id,
            IngestionResult(
                status=PROCESSED,
                tweet_id=mention.tweet_id,
                mention_id=mention_id,
                account_id=account_id,
                score=score.total,
            ),
        )


async def get_watermark(session: AsyncSession) -> int | None:
    """Unix seconds of the newest stored mention's platform timestamp."""
    latest = await session.scalar(select(func.max(Mention.created_at)))
    return to_unix_seconds(latest) if latest is not None else None


async def run_pull(
    session: AsyncSession,
    cache: CacheBackend,
    client: TwitterClient,
    handle: str,
) -> PullSummary:
    """Fetch mentions since the watermark and ingest each one independently.

    ``MentionSourceError`` from the client propagates before anything is
    written, leaving the watermark where it was.
    """
    since_time = await get_watermark(session)
    candidates = await client.search_mentions(handle, since_time=since_time)

    summary = PullSummary(total=len(candidates))
    ingestor = MentionIngestor(session, cache)
    for payload in candidates:
        try:
            mention = normalize_mention(payload)
        except MentionPayloadError as exc:
            logger.warning("mention_payload_skipped", extra={"error": str(exc)})
            summary.skipped += 1
            continue

        try:
            result = await ingestor.ingest(mention, source=SOURCE_PULL, payload=payload)
        except MentionProcessingError:
            summary.errors += 1
            continue

        if result.credited:
            summary.processed += 1
        else:
            summary.skipped += 1

    logger.info(
        "mention_pull_completed",
        extra={"handle": handle, "since_time": since_time, **summary.to_dict()},
    )
    return summary
