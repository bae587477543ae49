"""Key-value cache capability used for idempotency, nonces and read caching.

The cache is advisory: every caller treats ``CacheError`` as a miss and
falls back to the database. ``RedisCache`` is used when ``REDIS_URL`` is set;
otherwise the process runs on ``InMemoryCache``.
"""

from __future__ import annotations

import logging
import time
from typing import Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

from ..config import settings

logger = logging.getLogger(__name__)


class CacheError(RuntimeError):
    """The cache backend could not complete an operation."""


class CacheBackend(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl: int | None = None) -> None: ...

    async def incr(self, key: str) -> int: ...

    async def expire(self, key: str, ttl: int) -> bool: ...

    async def delete(self, *keys: str) -> int: ...

    async def close(self) -> None: ...


class RedisCache:
    """``redis.asyncio`` client that reports failures as ``CacheError``."""

    def __init__(self, url: str, client: redis.Redis | None = None) -> None:
        self.url = url
        self._client = client or redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=2,
            socket_connect_timeout=2,
        )

    async def get(self, key: str) -> str | None:
        try:
            return await self._client.get(key)
        except RedisError as exc:
            raise CacheError(f"GET {key} failed: {exc}") from exc

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        try:
            await self._client.set(key, value, ex=ttl)
        except RedisError as exc:
            raise CacheError(f"SET {key} failed: {exc}") from exc

    async def incr(self, key: str) -> int:
        try:
            return int(await self._client.incr(key))
        except RedisError as exc:
            raise CacheError(f"INCR {key} failed: {exc}") from exc

    async def expire(self, key: str, ttl: int) -> bool:
        try:
            return bool(await self._client.expire(key, ttl))
        except RedisError as exc:
            raise CacheError(f"EXPIRE {key} failed: {exc}") from exc

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return int(await self._client.delete(*keys))
        except RedisError as exc:
            raise CacheError(f"DEL {' '.join(keys)} failed: {exc}") from exc

    async def close(self) -> None:
        await self._client.aclose()


class InMemoryCache:
    """Single-process TTL cache with the same surface as ``RedisCache``."""

    def __init__(self) -> None:
        self._entries: dict[str, tuple[str, float | None]] = {}

    def _live_entry(self, key: str) -> tuple[str, float | None] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and time.monotonic() >= expires_at:
            del self._entries[key]
            return None
        return entry

    async def get(self, key: str) -> str | None:
        entry = self._live_entry(key)
        return entry[0] if entry else None

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        expires_at = time.monotonic() + ttl if ttl else None
        self._entries[key] = (value, expires_at)

    async def incr(self, key: str) -> int:
        entry = self._live_entry(key)
        current = int(entry[0]) if entry else 0
        expires_at = entry[1] if entry else None
        self._entries[key] = (str(current + 1), expires_at)
        return current + 1

    async def expire(self, key: str, ttl: int) -> bool:
        entry = self._live_entry(key)
        if entry is None:
            return False
        self._entries[key] = (entry[0], time.monotonic() + ttl)
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._live_entry(key) is not None:
                del self._entries[key]
                removed += 1
        return removed

    async def close(self) -> None:
        self._entries.clear()


_cache: CacheBackend | None = None


def build_cache(redis_url: str | None) -> CacheBackend:
    if redis_url:
        return RedisCache(redis_url)
    logger.warning(
        "REDIS_URL not configured - using in-process cache",
        extra={"cache_backend": "memory"},
    )
    return InMemoryCache()


def get_cache() -> CacheBackend:
    """FastAPI dependency returning the process-wide cache."""
    global _cache
    if _cache is None:
        _cache = build_cache(settings.redis_url)
    return _cache


async def close_cache() -> None:
    global _cache
    if _cache is not None:
        await _cache.close()
        _cache = None
