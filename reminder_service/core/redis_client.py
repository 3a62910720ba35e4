"""Redis client configuration and utilities."""

import redis

from reminder_service.config import settings

# Global Redis client instance
_redis_client: redis.Redis | None = None


def get_redis_client() -> redis.Redis:
    """
    Get or create Redis client instance.

    ``REDIS_URL`` wins over the individual host settings when it is set.

    Returns:
        Redis client instance
    """
    global _redis_client

    if _redis_client is None:
        if settings.redis_url:
            _redis_client = redis.Redis.from_url(
                settings.redis_url,
                decode_responses=settings.redis_decode_responses,
                socket_connect_timeout=5,
                health_check_interval=30,
            )
        else:
            _redis_client = redis.Redis(
                host=settings.redis_host,
                port=settings.redis_port,
                username=settings.redis_username if settings.redis_password else None,
                password=settings.redis_password or None,
                decode_responses=settings.redis_decode_responses,
                socket_connect_timeout=5,
                socket_keepalive=True,
                health_check_interval=30,
            )

    return _redis_client


async def check_redis_connection() -> bool:
    """
    Check if Redis connection is healthy.

    Returns:
        True if connection is healthy, False otherwise
    """
    try:
        client = get_redis_client()
        client.ping()
        return True
    except redis.RedisError:
        return False


def close_redis_connection() -> None:
    """Close Redis connection."""
    global _redis_client

    if _redis_client is not None:
        _redis_client.close()
        _redis_client = None
