"""
Redis client access.

Used by the rate limiter. Degrades gracefully: when Redis is down the caller
gets None and is expected to fail open.
"""
import logging
import time
from typing import Optional
import redis
from redis.exceptions import ConnectionError, TimeoutError, RedisError
from core.config import settings

logger = logging.getLogger(__name__)

# Seconds to wait before retrying a Redis connection that just failed.
RECONNECT_BACKOFF_S = 30

_redis_client: Optional[redis.Redis] = None
_last_failure_at: Optional[float] = None


def get_redis_client() -> Optional[redis.Redis]:
    """Get Redis client with connection pooling. Returns None if Redis unavailable."""
    global _redis_client, _last_failure_at

    if _redis_client is not None:
        return _redis_client

    if _last_failure_at is not None and time.time() - _last_failure_at < RECONNECT_BACKOFF_S:
        return None

    try:
        client = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
            retry_on_timeout=True,
            health_check_interval=30
        )
        client.ping()
        logger.info("Redis connection established")
        _redis_client = client
        _last_failure_at = None
        return _redis_client
    except (ConnectionError, TimeoutError, RedisError) as e:
        logger.warning(f"Redis unavailable: {e}. Rate limiting disabled for {RECONNECT_BACKOFF_S}s.")
        _redis_client = None
        _last_failure_at = time.time()
        return None
