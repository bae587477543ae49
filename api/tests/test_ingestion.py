"""Tests for the idempotent mention ingestion core and pull runs."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from app.db.accounts import Account
from app.db.mentions import IngestionEvent, Mention
from app.services.cache import InMemoryCache
from app.services.idempotency import IdempotencyLedger, processed_key
from app.services.ingestion import (
    DUPLICATE,
    OWNER_NOT_FOUND,
    PROCESSED,
    SOURCE_PULL,
    MentionIngestor,
    MentionProcessingError,
    get_watermark,
    run_pull,
)
from app.services.leaderboard import GENERATION_KEY
from app.services.mention_payload import normalize_mention
from app.services.twitter_client import MentionSourceError


async def _points(session, account_id: int) -> int:
    return await session.scalar(select(Account.total_points).where(Account.id == account_id))


async def _mention_count(session) -> int:
    return await session.scalar(select(func.count(Mention.id)))


class TestIngest:
    @pytest.mark.asyncio
    async def test_credits_linked_account(self, session, cache, make_account, mention_payload) -> None:
        account = await make_account(twitter_id="tw-1", twitter_handle="strongbad")
        mention = normalize_mention(mention_payload())

        result = await MentionIngestor(session, cache).ingest(mention)

        assert result.status == PROCESSED
        assert result.score == 35
        assert await _points(session, account.id) == 35
        stored = await session.scalar(select(Mention).where(Mention.tweet_id == "1001"))
        assert stored.points_awarded == stored.quality_score == 35
        assert stored.score_breakdown == {
            "engagement_score": 10,
            "content_score": 15,
            "virality_score": 10,
            "total_score": 35,
        }
        assert stored.impressions == 120
        event = await session.scalar(select(IngestionEvent))
        assert event.processed is True
        assert event.outcome == PROCESSED
        assert await cache.get(processed_key("1001")) == "1"
        assert await cache.get(GENERATION_KEY) == "1"

    @pytest.mark.asyncio
    async def test_redelivery_is_a_no_op(self, session, cache, make_account, mention_payload) -> None:
        account = await make_account(twitter_id="tw-1")
        mention = normalize_mention(mention_payload())
        ingestor = MentionIngestor(session, cache)

        await ingestor.ingest(mention)
        second = await ingestor.ingest(mention, source="pull")

        assert second.status == DUPLICATE
        assert await _mention_count(session) == 1
        assert await _points(session, account.id) == 35

    @pytest.mark.asyncio
    async def test_redelivery_with_cold_cache(self, session, make_account, mention_payload) -> None:
        account = await make_account(twitter_id="tw-1")
        mention = normalize_mention(mention_payload())

        await MentionIngestor(session, InMemoryCache()).ingest(mention)
        second = await MentionIngestor(session, InMemoryCache()).ingest(mention)

        assert second.status == DUPLICATE
        assert await _points(session, account.id) == 35

    @pytest.mark.asyncio
    async def test_existing_mention_without_ledger_record(
        self, session, cache, make_account, mention_payload
    ) -> None:
        """A mention row is the natural key even if the ledger lost the event."""
        account = await make_account(twitter_id="tw-1")
        mention = normalize_mention(mention_payload())
        await MentionIngestor(session, cache).ingest(mention)
        await session.execute(IngestionEvent.__table__.delete())
        await session.commit()

        result = await MentionIngestor(session, InMemoryCache()).ingest(mention)

        assert result.status == DUPLICATE
        assert await _points(session, account.id) == 35

    @pytest.mark.asyncio
    async def test_unknown_author_marks_event_processed(self, session, cache, mention_payload) -> None:
        mention = normalize_mention(mention_payload(author_id="stranger"))

        result = await MentionIngestor(session, cache).ingest(mention)

        assert result.status == OWNER_NOT_FOUND
        assert await _mention_count(session) == 0
        event = await session.scalar(select(IngestionEvent))
        assert event.processed is True
        assert event.outcome == OWNER_NOT_FOUND
        assert await cache.get(GENERATION_KEY) is None

    @pytest.mark.asyncio
    async def test_missing_author_is_owner_not_found(self, session, cache, mention_payload) -> None:
        mention = normalize_mention(mention_payload(author_id=None))
        result = await MentionIngestor(session, cache).ingest(mention)
        assert result.status == OWNER_NOT_FOUND

    @pytest.mark.asyncio
    async def test_failure_rolls_back_and_records_error(
        self, session, cache, make_account, mention_payload
    ) -> None:
        account = await make_account(twitter_id="tw-1")
        mention = normalize_mention(mention_payload())

        with patch(
            "app.services.ingestion.calculate_quality_score",
            side_effect=RuntimeError("scorer offline"),
        ):
            with pytest.raises(MentionProcessingError):
                await MentionIngestor(session, cache).ingest(mention)

        assert await _mention_count(session) == 0
        assert await _points(session, account.id) == 0
        event = await session.scalar(select(IngestionEvent))
        await session.refresh(event)
        assert event.processed is False
        assert "scorer offline" in event.error
        assert await cache.get(processed_key("1001")) is None

        # The next delivery retries and succeeds.
        result = await MentionIngestor(session, cache).ingest(mention)
        assert result.status == PROCESSED
        await session.refresh(event)
        assert event.retry_count == 1
        assert await _points(session, account.id) == 35

    @pytest.mark.asyncio
    async def test_points_equal_sum_of_mentions(
        self, session, cache, make_account, mention_payload
    ) -> None:
        account = await make_account(twitter_id="tw-1")
        ingestor = MentionIngestor(session, cache)
        for tweet_id, likes in (("1", 0), ("2", 9), ("3", 99), ("2", 9)):
            await ingestor.ingest(normalize_mention(mention_payload(tweet_id, likeCount=likes)))

        total = await session.scalar(
            select(func.sum(Mention.points_awarded)).where(Mention.account_id == account.id)
        )
        assert await _points(session, account.id) == total
        assert await _mention_count(session) == 3


class TestRacingHandlers:
    """Webhook and pull can deliver the same tweet at the same time."""

    async def _assert_credited_once(self, session_factory, account_id: int) -> None:
        async with session_factory() as session:
            assert await _mention_count(session) == 1
            total = await session.scalar(select(func.sum(Mention.points_awarded)))
            assert await _points(session, account_id) == total == 35
            event = await session.scalar(select(IngestionEvent))
            assert event.processed is True
            assert event.outcome == PROCESSED

    @pytest.mark.asyncio
    async def test_begun_event_finished_by_other_handler(
        self, session_factory, cache, make_account, mention_payload
    ) -> None:
        account = await make_account(twitter_id="tw-1")
        mention = normalize_mention(mention_payload("40"))

        async with session_factory() as slow_session, session_factory() as fast_session:
            slow = MentionIngestor(slow_session, InMemoryCache())
            assert not await slow.ledger.is_processed("40")
            event_id = await slow.ledger.begin("40", source=SOURCE_PULL)

            fast_result = await MentionIngestor(fast_session, cache).ingest(mention)
            slow_result = await slow._apply(event_id, mention)

        assert fast_result.status == PROCESSED
        assert slow_result.status == DUPLICATE
        await self._assert_credited_once(session_factory, account.id)

    @pytest.mark.asyncio
    async def test_lost_insert_race_keeps_winner_outcome(
        self, session_factory, cache, make_account, mention_payload
    ) -> None:
        """The loser passed the existence check before the winner committed."""
        account = await make_account(twitter_id="tw-1")
        mention = normalize_mention(mention_payload("41"))

        async with session_factory() as slow_session, session_factory() as fast_session:
            slow = MentionIngestor(slow_session, InMemoryCache())
            event_id = await slow.ledger.begin("41", source=SOURCE_PULL)
            await MentionIngestor(fast_session, cache).ingest(mention)

            real_scalar = slow_session.scalar
            calls = []

            async def stale_scalar(statement, *args, **kwargs):
                calls.append(statement)
                if len(calls) == 2:
                    return None  # existing-mention lookup ran before the winner committed
                return await real_scalar(statement, *args, **kwargs)

            with patch.object(slow_session, "scalar", new=stale_scalar):
                slow_result = await slow._apply(event_id, mention)

        assert slow_result.status == DUPLICATE
        await self._assert_credited_once(session_factory, account.id)


class TestRunPull:
    @pytest.mark.asyncio
    async def test_counts_outcomes_independently(
        self, session, cache, make_account, mention_payload
    ) -> None:
        await make_account(twitter_id="tw-1")
        client = AsyncMock()
        client.search_mentions.return_value = [
            mention_payload("10"),
            mention_payload("11", author_id="stranger"),
            {"id": "12", "text": "no timestamp"},
            mention_payload("13"),
        ]

        with patch.object(MentionIngestor, "_apply", new=_fail_for("13")):
            summary = await run_pull(session, cache, client, "trogdorcult")

        assert summary.to_dict() == {"processed": 1, "skipped": 2, "errors": 1, "total": 4}
        client.search_mentions.assert_awaited_once_with("trogdorcult", since_time=None)

    @pytest.mark.asyncio
    async def test_ledger_failure_does_not_abort_batch(
        self, session, cache, make_account, mention_payload
    ) -> None:
        account = await make_account(twitter_id="tw-1")
        client = AsyncMock()
        client.search_mentions.return_value = [
            mention_payload("30"),
            mention_payload("31"),
            mention_payload("32"),
        ]
        original = IdempotencyLedger.begin

        async def begin(self, external_id, *args, **kwargs):
            if external_id == "31":
                raise OperationalError("INSERT INTO ingestion_events", {}, Exception("connection reset"))
            return await original(self, external_id, *args, **kwargs)

        with patch.object(IdempotencyLedger, "begin", new=begin):
            summary = await run_pull(session, cache, client, "trogdorcult")

        assert summary.to_dict() == {"processed": 2, "skipped": 0, "errors": 1, "total": 3}
        assert await _mention_count(session) == 2
        assert await _points(session, account.id) == 70

    @pytest.mark.asyncio
    async def test_uses_watermark(self, session, cache, make_account, mention_payload) -> None:
        await make_account(twitter_id="tw-1")
        await MentionIngestor(session, cache).ingest(normalize_mention(mention_payload("20")))
        client = AsyncMock()
        client.search_mentions.return_value = [mention_payload("20")]

        summary = await run_pull(session, cache, client, "trogdorcult")

        # 2024-12-10T07:00:30Z
        client.search_mentions.assert_awaited_once_with("trogdorcult", since_time=1733814030)
        assert summary.skipped == 1
        assert await get_watermark(session) == 1733814030

    @pytest.mark.asyncio
    async def test_source_failure_writes_nothing(self, session, cache) -> None:
        client = AsyncMock()
        client.search_mentions.side_effect = MentionSourceError("timeout")

        with pytest.raises(MentionSourceError):
            await run_pull(session, cache, client, "trogdorcult")

        assert await session.scalar(select(func.count(IngestionEvent.id))) == 0
        assert await get_watermark(session) is None


def _fail_for(tweet_id: str):
    """Wrap the real ``_apply`` so one tweet raises."""
    original = MentionIngestor._apply

    async def _apply(self, event_id, mention):
        if mention.tweet_id == tweet_id:
            raise RuntimeError("unexpected")
        return await original(self, event_id, mention)

    return _apply
