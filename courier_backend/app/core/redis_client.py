"""
Shared Redis connection for the notification queue.
"""

import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

from courier_backend.app.core.config import settings

logger = logging.getLogger(__name__)

redis_client = redis.from_url(settings.redis_url, decode_responses=settings.redis_decode_responses)


async def get_redis():
    """FastAPI dependency; overridden in tests with an in-memory queue."""
    return redis_client


async def ping_redis() -> bool:
    """Queue reachability for the health endpoint."""
    try:
        return bool(await redis_client.ping())
    except (RedisError, OSError) as exc:
        logger.warning("Notification queue unreachable: %s", exc)
        return False
