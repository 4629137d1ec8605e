"""Redis-backed key/value store used by the query cache."""

from typing import Optional
import redis.asyncio as redis
import structlog

from .base import KeyValueStore, StoreConnectionError, StoreQueryError

logger = structlog.get_logger("directory_store.redis")


class RedisKeyValueStore(KeyValueStore):
    """``KeyValueStore`` on top of ``redis.asyncio``.

    Values are stored with ``SETEX`` so Redis evicts entries on its own;
    readers still apply their own freshness checks.
    """

    def __init__(self, redis_url: str, client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.redis_client = client or redis.from_url(redis_url, decode_responses=True)

    async def get(self, key: str) -> Optional[str]:
        try:
            value = await self.redis_client.get(key)
        except redis.ConnectionError as e:
            raise StoreConnectionError(f"Redis unavailable: {e}")
        except redis.RedisError as e:
            raise StoreQueryError(f"Redis GET failed: {e}")

        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self.redis_client.setex(key, ttl_seconds, value)
        except redis.ConnectionError as e:
            raise StoreConnectionError(f"Redis unavailable: {e}")
        except redis.RedisError as e:
            raise StoreQueryError(f"Redis SETEX failed: {e}")

    async def close(self) -> None:
        try:
            await self.redis_client.aclose()
            logger.info("Redis key/value store closed")
        except Exception as e:
            logger.warning("Failed to close Redis client", error=str(e))
