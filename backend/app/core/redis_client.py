import redis.asyncio as aioredis
from redis.asyncio import Redis
from typing import Optional

from app.core.config import settings
from app.core.logging_config import logger


class RedisClient:
    """Owns the Redis connection pool shared by one server process"""

    def __init__(self, url: Optional[str] = None):
        self.url = url or settings.REDIS_URL
        self.redis: Optional[Redis] = None
        self._pool: Optional[aioredis.ConnectionPool] = None

    async def connect(self) -> Optional[Redis]:
        """
        Connect to Redis.

        Returns None when Redis cannot be reached so callers run degraded
        (every cache read is a miss) instead of refusing to start.
        """
        try:
            self._pool = aioredis.ConnectionPool.from_url(
                self.url,
                max_connections=settings.REDIS_MAX_CONNECTIONS,
                encoding="utf-8",
                decode_responses=True
            )
            self.redis = Redis(connection_pool=self._pool)
            await self.redis.ping()
            logger.info("Redis connected successfully")
        except Exception as e:
            logger.error(f"Redis connection error, running without session cache: {e}")
            await self.disconnect()
        return self.redis

    async def disconnect(self):
        """Disconnect from Redis"""
        if self.redis:
            try:
                await self.redis.close()
            except Exception as e:
                logger.warning(f"Redis close error: {e}")
            self.redis = None
        if self._pool:
            await self._pool.disconnect()
            self._pool = None
        logger.info("Redis disconnected")
