"""Cache services: in-process TTL cache and Redis.

Both expose ``get(key) -> str | None`` and ``set(key, value, ttl_seconds)``.
The cache is best-effort: failures are logged and swallowed so an outage
never breaks the scoring path.
"""

import hashlib
import time
from typing import Protocol

import redis.asyncio as redis
import structlog

logger = structlog.get_logger()


class CacheService(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...


def text_cache_key(prefix: str, *parts: str) -> str:
    """Stable cache key from a hash of the input text."""
    digest = hashlib.sha256("\x1f".join(parts).encode("utf-8")).hexdigest()
    return f"{prefix}:{digest[:32]}"


class MemoryCache:
    """In-process cache with per-entry TTL (monotonic clock)."""

    def __init__(self, max_entries: int = 10_000):
        self.max_entries = max_entries
        self._entries: dict[str, tuple[float, str]] = {}

    async def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if time.monotonic() >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        if len(self._entries) >= self.max_entries and key not in self._entries:
            self._evict()
        self._entries[key] = (time.monotonic() + ttl_seconds, value)

    def _evict(self) -> None:
        now = time.monotonic()
        expired = [k for k, (exp, _) in self._entries.items() if exp <= now]
        for k in expired:
            del self._entries[k]
        # Still full: drop the entry closest to expiry
        if len(self._entries) >= self.max_entries:
            oldest = min(self._entries, key=lambda k: self._entries[k][0])
            del self._entries[oldest]

    def __len__(self) -> int:
        return len(self._entries)


class RedisCache:
    """Redis-backed cache. Every error degrades to a miss."""

    def __init__(self, url: str, max_connections: int = 10):
        self.url = url
        self._pool = redis.ConnectionPool.from_url(
            url,
            decode_responses=True,
            max_connections=max_connections,
        )
        self._client = redis.Redis(connection_pool=self._pool)
        logger.info("redis_cache_initialized", url=url)

    async def get(self, key: str) -> str | None:
        try:
            return await self._client.get(key)
        except Exception:
            logger.debug("cache_get_failed", key=key, exc_info=True)
            return None

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._client.setex(key, ttl_seconds, value)
        except Exception:
            logger.debug("cache_set_failed", key=key, exc_info=True)

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except Exception:
            return False

    async def close(self) -> None:
        await self._client.aclose()
        await self._pool.aclose()
        logger.info("redis_cache_closed")
