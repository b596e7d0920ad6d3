"""Shared Redis client.

Redis only backs the desktop handoff token cache; nothing authoritative
lives there, so a lost connection costs users a desktop sign-in at worst.
"""

import asyncio

from redis.asyncio import Redis

from entitle.config.settings import Settings, get_settings

_client: Redis | None = None
_lock = asyncio.Lock()


async def get_redis_client(settings: Settings | None = None) -> Redis:
    """Get or create the process-wide client with its own connection pool."""
    global _client
    if _client is None:
        async with _lock:
            if _client is None:
                settings = settings or get_settings()
                _client = Redis.from_url(
                    settings.REDIS_URL,
                    max_connections=settings.REDIS_MAX_CONNECTIONS,
                    decode_responses=True,
                    health_check_interval=30,
                )
    return _client


async def close_redis() -> None:
    """Close the client and its pool. Called during application shutdown."""
    global _client
    async with _lock:
        if _client is not None:
            await _client.aclose()
            _client = None
