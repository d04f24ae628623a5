"""
Redis Client - shared async singleton.

Used for readiness checks and for the short-lived locks that keep two beat
deliveries of the daily payout check from running side by side.
"""
import asyncio
from urllib.parse import urlparse

import redis.asyncio as aioredis

from payout_ledger.core.config import settings
from payout_ledger.core.logging import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None
_init_lock = asyncio.Lock()


def _mask_redis_url(url: str) -> str:
    """Hide the password in REDIS_URL for logs (redis://:****@host:6379)"""
    parsed = urlparse(url)
    if parsed.password:
        return url.replace(f":{parsed.password}@", ":****@")
    return url


async def get_redis() -> aioredis.Redis:
    """Redis client singleton (async, connection pool)"""
    global _redis_client
    if _redis_client is not None:
        return _redis_client

    async with _init_lock:
        if _redis_client is not None:
            return _redis_client

        client = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
        )
        await client.ping()
        _redis_client = client
        logger.info("Redis client initialized", extra_data={
            "url": _mask_redis_url(settings.REDIS_URL),
        })
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection; call on app shutdown and at the end of each task"""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")


async def acquire_lock(name: str, ttl_seconds: int) -> bool:
    """SET NX with expiry; False when another holder has the lock"""
    client = await get_redis()
    return bool(await client.set(f"lock:{name}", "1", nx=True, ex=ttl_seconds))


async def release_lock(name: str) -> None:
    client = await get_redis()
    await client.delete(f"lock:{name}")
