"""Expiring token cache for the dashboard-to-desktop auth handoff.

A handoff token maps to a small payload (who logged in) for a few
minutes and can be redeemed once. The cache is a convenience, not a
source of truth: losing it only makes the user sign in again on the
desktop app.

Two backends share the ``TokenCache`` protocol:

* ``InMemoryTokenCache``: process-local, swept of expired entries on
  every access and bounded in size (oldest entries evicted first).
* ``RedisTokenCache``: ``SET ... EX`` on write, ``GETDEL`` on redeem, so
  several API processes share tokens.
"""

import asyncio
import json
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import structlog
from redis.asyncio import Redis

from entitle.config.settings import Settings, TokenCacheBackend

logger = structlog.get_logger()


class TokenCache(Protocol):
    """One-time, expiring token store."""

    async def put(self, token: str, payload: dict[str, Any], ttl_seconds: int) -> None:
        """Store ``payload`` under ``token`` for ``ttl_seconds``."""
        ...

    async def get(self, token: str) -> dict[str, Any] | None:
        """Read without consuming. None if unknown or expired."""
        ...

    async def pop(self, token: str) -> dict[str, Any] | None:
        """Read and consume. None if unknown or expired."""
        ...


@dataclass
class CacheStats:
    """Counters for the in-memory cache."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    entries: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total


@dataclass
class _Entry:
    payload: dict[str, Any]
    expires_at: float


class InMemoryTokenCache:
    """Process-local token cache.

    Args:
        max_entries: Size bound; the oldest entry is evicted past it
        clock: Monotonic seconds source, injectable for tests
    """

    def __init__(
        self,
        max_entries: int = 10_000,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._lock = asyncio.Lock()
        self._stats = CacheStats()

    @property
    def stats(self) -> CacheStats:
        self._stats.entries = len(self._entries)
        return self._stats

    def __len__(self) -> int:
        return len(self._entries)

    async def put(self, token: str, payload: dict[str, Any], ttl_seconds: int) -> None:
        async with self._lock:
            self._sweep()
            self._entries[token] = _Entry(dict(payload), self._clock() + ttl_seconds)
            self._entries.move_to_end(token)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
                self._stats.evictions += 1

    async def get(self, token: str) -> dict[str, Any] | None:
        async with self._lock:
            self._sweep()
            entry = self._entries.get(token)
            return self._hit(entry)

    async def pop(self, token: str) -> dict[str, Any] | None:
        async with self._lock:
            self._sweep()
            entry = self._entries.pop(token, None)
            return self._hit(entry)

    async def sweep(self) -> int:
        """Drop expired entries now. Returns how many were dropped."""
        async with self._lock:
            return self._sweep()

    def _hit(self, entry: _Entry | None) -> dict[str, Any] | None:
        if entry is None:
            self._stats.misses += 1
            return None
        self._stats.hits += 1
        return dict(entry.payload)

    def _sweep(self) -> int:
        now = self._clock()
        expired = [token for token, entry in self._entries.items() if entry.expires_at <= now]
        for token in expired:
            del self._entries[token]
        self._stats.expirations += len(expired)
        return len(expired)


class RedisTokenCache:
    """Token cache shared through Redis; expiry is left to Redis."""

    def __init__(self, client: Redis, prefix: str = "entitle:handoff"):
        self._client = client
        self.prefix = prefix

    def _key(self, token: str) -> str:
        return f"{self.prefix}:{token}"

    async def put(self, token: str, payload: dict[str, Any], ttl_seconds: int) -> None:
        await self._client.set(self._key(token), json.dumps(payload), ex=ttl_seconds)

    async def get(self, token: str) -> dict[str, Any] | None:
        return _loads(await self._client.get(self._key(token)))

    async def pop(self, token: str) -> dict[str, Any] | None:
        return _loads(await self._client.getdel(self._key(token)))

    async def ping(self) -> bool:
        return bool(await self._client.ping())


def _loads(raw: str | bytes | None) -> dict[str, Any] | None:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("handoff_token_payload_corrupt")
        return None


async def create_token_cache(settings: Settings) -> TokenCache:
    """Build the configured backend."""
    if settings.handoff_cache_backend == TokenCacheBackend.REDIS:
        from entitle.core.redis import get_redis_client

        return RedisTokenCache(await get_redis_client())
    return InMemoryTokenCache(max_entries=settings.handoff_cache_max_size)
