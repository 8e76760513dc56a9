"""
Shared async Redis connection.

Redis holds the short-lived locks that serialize fee schema writes per
merchant and settlement runs per period. Nothing durable lives there.
"""

import logging

import redis.asyncio as redis
from glassbox_backend.app.core.config import settings

logger = logging.getLogger("glassbox")

redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis():
    """FastAPI dependency returning the shared client (overridden in tests)."""
    return redis_client


async def ping_redis() -> bool:
    """Reachability for /health. Never raises."""
    try:
        return bool(await redis_client.ping())
    except redis.RedisError as exc:
        logger.warning("Redis ping failed: %s", exc)
        return False


async def close_redis() -> None:
    """Release the connection pool on shutdown."""
    await redis_client.aclose()
