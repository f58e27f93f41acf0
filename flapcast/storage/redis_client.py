"""Redis connection pool shared by the circuit and history stores."""

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.exceptions import RedisError

from flapcast.core.config import get_settings
from flapcast.core.logging import get_logger

logger = get_logger(__name__)

# Owned by the process entry point: opened in start-up, closed in shutdown
_pool: redis.ConnectionPool | None = None


async def init_redis_pool() -> None:
    """Open the pool. A second call keeps the existing pool."""
    global _pool
    if _pool is None:
        settings = get_settings()
        _pool = redis.ConnectionPool.from_url(
            settings.redis_url,
            decode_responses=True,
            max_connections=settings.redis_max_connections,
            socket_timeout=settings.redis_socket_timeout_seconds,
        )


async def close_redis_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.disconnect()
        _pool = None


def get_redis() -> Redis:
    """Get a client bound to the shared pool.

    Raises:
        RuntimeError: If the pool is not open
    """
    if _pool is None:
        raise RuntimeError("Redis pool not initialized. Call init_redis_pool() first.")
    return redis.Redis(connection_pool=_pool)


async def ping_redis(client: Redis | None = None) -> bool:
    """Check that Redis answers. Never raises."""
    try:
        return bool(await (client or get_redis()).ping())
    except (RedisError, RuntimeError) as e:
        logger.warning("Redis ping failed", error=str(e))
        return False


class RedisKeys:
    """Redis key patterns."""

    # Circuits: one hash per circuit plus the set of known ids
    CIRCUIT_DETAIL = "flapcast:circuits:detail:{circuit_id}"
    CIRCUIT_ALL = "flapcast:circuits:all"

    # Content history: capped list, newest first
    CONTENT_HISTORY = "flapcast:content:history"

    @classmethod
    def circuit_detail(cls, circuit_id: str) -> str:
        return cls.CIRCUIT_DETAIL.format(circuit_id=circuit_id)
