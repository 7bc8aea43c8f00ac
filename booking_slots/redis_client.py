# booking_slots/redis_client.py
"""
Shared Redis client.

Built lazily from settings. Returns None when REDIS_URL is not configured,
in which case callers fall back to single-process behaviour.
"""

import logging
from functools import lru_cache

from redis import Redis

from .config import get_settings

logger = logging.getLogger(__name__)


@lru_cache
def get_redis_client() -> Redis | None:
    settings = get_settings()
    if not settings.redis_url:
        logger.info("REDIS_URL not set, shared store disabled")
        return None

    return Redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_timeout,
    )
