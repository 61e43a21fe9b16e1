# gemini_chat/redis_client.py
"""
Shared Redis connection pool for the OTP store and the chatroom list cache.
"""

from contextlib import contextmanager

import redis as redis_lib

from .config import settings
from .logging_config import get_logger

logger = get_logger(__name__)

redis_pool = redis_lib.ConnectionPool.from_url(
    settings.REDIS_URL,
    decode_responses=True,
    max_connections=20,
    socket_keepalive=True,
    socket_connect_timeout=5,
    socket_timeout=5,
    retry_on_timeout=True
)


def get_redis() -> redis_lib.Redis:
    """
    FastAPI dependency returning a pooled client.

    Usage:
        def endpoint(redis_client: redis_lib.Redis = Depends(get_redis)):
            ...
    """
    return redis_lib.Redis(connection_pool=redis_pool)


@contextmanager
def get_redis_client():
    """Context manager variant for code running outside a request"""
    client = redis_lib.Redis(connection_pool=redis_pool)
    try:
        yield client
    except redis_lib.RedisError as e:
        logger.error(
            "Redis operation failed",
            extra={"extra_data": {"error": str(e)}},
            exc_info=True
        )
        raise


def ping_redis() -> bool:
    try:
        with get_redis_client() as client:
            return bool(client.ping())
    except redis_lib.RedisError:
        return False
