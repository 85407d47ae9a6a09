"""Redis cache infrastructure with graceful degradation."""

from typing import Any

import orjson
import redis.asyncio as aioredis
import structlog

from catalog_sync.config import Settings, get_settings

logger = structlog.get_logger()

_redis_client: aioredis.Redis | None = None


async def create_redis_client(settings: Settings | None = None) -> aioredis.Redis | None:
    """Open a new Redis client, or None when Redis cannot be reached."""
    settings = settings or get_settings()
    client = aioredis.from_url(
        settings.redis_url,
        decode_responses=False,
        socket_connect_timeout=2,
        socket_timeout=2,
        retry_on_timeout=True,
    )
    try:
        await client.ping()
    except Exception as e:
        logger.warning("Redis unavailable, caching disabled", error=str(e))
        await client.aclose()
        return None
    logger.info("Redis connection established")
    return client


async def get_redis_client() -> aioredis.Redis | None:
    """Get or create the global async Redis client."""
    global _redis_client
    if _redis_client is None:
        _redis_client = await create_redis_client()
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


class CacheService:
    """Async Redis cache with orjson serialization. No-ops if Redis is unavailable."""

    def __init__(self, client: aioredis.Redis | None, prefix: str = "catalog_sync:"):
        self.client = client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> Any | None:
        if not self.client:
            return None
        try:
            data = await self.client.get(self._key(key))
            if data:
                return orjson.loads(data)
        except Exception as e:
            logger.warning("Cache get failed", key=key, error=str(e))
        return None

    async def set(self, key: str, value: Any, ttl_seconds: int = 300) -> None:
        if not self.client:
            return
        try:
            await self.client.set(self._key(key), orjson.dumps(value), ex=ttl_seconds)
        except Exception as e:
            logger.warning("Cache set failed", key=key, error=str(e))

    async def delete(self, key: str) -> None:
        if not self.client:
            return
        try:
            await self.client.delete(self._key(key))
        except Exception as e:
            logger.warning("Cache delete failed", key=key, error=str(e))

    async def delete_prefix(self, key_prefix: str) -> int:
        """Remove every key under a prefix. Returns the number deleted."""
        if not self.client:
            return 0
        deleted = 0
        try:
            async for key in self.client.scan_iter(match=f"{self._key(key_prefix)}*"):
                deleted += await self.client.delete(key)
        except Exception as e:
            logger.warning("Cache prefix delete failed", prefix=key_prefix, error=str(e))
        return deleted

    async def health_check(self) -> bool:
        if not self.client:
            return False
        try:
            return await self.client.ping()
        except Exception:
            return False
