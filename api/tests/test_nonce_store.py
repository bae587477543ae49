"""Tests for the single-use nonce store."""

from __future__ import annotations

import asyncio
import logging
from unittest.mock import AsyncMock

import pytest

from app.services.cache import CacheError, InMemoryCache
from app.services.nonce_store import NonceStore, build_sign_in_message, extract_nonce


@pytest.fixture
def store(cache: InMemoryCache) -> NonceStore:
    return NonceStore(cache, ttl_seconds=300, used_ttl_seconds=3600)


class TestNonceLifecycle:
    @pytest.mark.asyncio
    async def test_issue_then_consume_once(self, store: NonceStore, cache: InMemoryCache) -> None:
        nonce = await store.issue()

        assert await cache.get(f"nonce:pending:{nonce}") == "1"
        assert await store.consume(nonce) is True
        assert await store.consume(nonce) is False
        assert await cache.get(f"nonce:used:{nonce}") == "1"

    @pytest.mark.asyncio
    async def test_unknown_nonce_rejected(self, store: NonceStore) -> None:
        assert await store.consume("deadbeef") is False

    @pytest.mark.asyncio
    async def test_expired_nonce_rejected(self, cache: InMemoryCache) -> None:
        store = NonceStore(cache, ttl_seconds=1, used_ttl_seconds=3600)
        nonce = await store.issue()
        # Force expiry without sleeping.
        value, _ = cache._entries[f"nonce:pending:{nonce}"]
        cache._entries[f"nonce:pending:{nonce}"] = (value, 0.0)

        assert await store.consume(nonce) is False

    @pytest.mark.asyncio
    async def test_concurrent_consumers_single_winner(self, store: NonceStore) -> None:
        nonce = await store.issue()

        results = await asyncio.gather(*(store.consume(nonce) for _ in range(5)))

        assert results.count(True) == 1

    @pytest.mark.asyncio
    async def test_issued_nonces_are_unique(self, store: NonceStore) -> None:
        nonces = {await store.issue() for _ in range(20)}
        assert len(nonces) == 20


class TestCacheUnavailable:
    @pytest.mark.asyncio
    async def test_consume_degrades_to_allow(self, caplog: pytest.LogCaptureFixture) -> None:
        broken = AsyncMock()
        broken.delete.side_effect = CacheError("connection refused")
        store = NonceStore(broken, ttl_seconds=300, used_ttl_seconds=3600)

        with caplog.at_level(logging.WARNING, logger="app.services.nonce_store"):
            assert await store.consume("abc") is True

        assert "nonce_check_skipped" in caplog.text

    @pytest.mark.asyncio
    async def test_issue_still_returns_token(self) -> None:
        broken = AsyncMock()
        broken.set.side_effect = CacheError("connection refused")
        store = NonceStore(broken, ttl_seconds=300, used_ttl_seconds=3600)

        nonce = await store.issue()

        assert len(nonce) == 32


class TestExtractNonce:
    def test_from_sign_in_message(self) -> None:
        assert extract_nonce(build_sign_in_message("a1b2c3")) == "a1b2c3"

    def test_case_insensitive_label(self) -> None:
        assert extract_nonce("NONCE: ff00") == "ff00"

    def test_missing(self) -> None:
        assert extract_nonce("Sign this message") is None
