"""
OrderFlow — Shared Redis connection

One client per process backs the pending-notification lists, the order:{id}
pub/sub channels and the idempotency cache. Tests swap ``_redis_client`` for
a fakeredis instance.
"""
import redis.asyncio as aioredis

from orderflow.core.config import get_settings

settings = get_settings()

_redis_client: aioredis.Redis | None = None


def get_redis() -> aioredis.Redis:
    global _redis_client
    if _redis_client is None:
        _redis_client = aioredis.Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=settings.HEALTH_CHECK_TIMEOUT,
            health_check_interval=30,
        )
    return _redis_client


async def ping_redis() -> bool:
    return bool(await get_redis().ping())


async def close_redis() -> None:
    global _redis_client
    client, _redis_client = _redis_client, None
    if client is not None:
        await client.aclose()
