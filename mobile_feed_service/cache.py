"""
Redis cache for public feed pages
"""
import redis.asyncio as redis
from typing import Optional, Dict, Any
import hashlib
import logging
import json

from .config import settings

logger = logging.getLogger(__name__)


class RedisCache:
    """Redis cache for anonymous, viewer-independent feed responses"""

    def __init__(self):
        self.client: Optional[redis.Redis] = None

    async def connect(self):
        """Connect to Redis"""
        if not settings.REDIS_ENABLED:
            logger.warning("Redis is disabled")
            return

        try:
            self.client = redis.from_url(
                f"redis://{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}",
                password=settings.REDIS_PASSWORD if settings.REDIS_PASSWORD else None,
                encoding="utf-8",
                decode_responses=True,
            )
            # Test connection
            await self.client.ping()
            logger.info("Redis cache connected successfully")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            self.client = None

    async def disconnect(self):
        """Disconnect from Redis"""
        if self.client:
            await self.client.aclose()
            self.client = None
            logger.info("Redis cache disconnected")

    @property
    def available(self) -> bool:
        return self.client is not None

    def _feed_key(self, params: Dict[str, Any]) -> str:
        """Get Redis key for a public feed page, built from every query parameter"""
        canonical = json.dumps(params, sort_keys=True, default=str)
        digest = hashlib.sha1(canonical.encode("utf-8")).hexdigest()
        return f"feed:public:{digest}"

    async def get_feed_page(self, params: Dict[str, Any]) -> Optional[dict]:
        """Get a cached feed response body"""
        if not self.client:
            return None

        try:
            data = await self.client.get(self._feed_key(params))
            return json.loads(data) if data else None
        except Exception as e:
            logger.error(f"Failed to get feed page from cache: {e}")
            return None

    async def set_feed_page(
        self,
        params: Dict[str, Any],
        body: dict,
        ttl: Optional[int] = None
    ) -> bool:
        """Cache a feed response body"""
        if not self.client:
            return False

        try:
            await self.client.set(
                self._feed_key(params),
                json.dumps(body),
                ex=ttl or settings.FEED_CACHE_TTL
            )
            return True
        except Exception as e:
            logger.error(f"Failed to set feed page in cache: {e}")
            return False

    async def ping(self) -> bool:
        if not self.client:
            return False
        try:
            return bool(await self.client.ping())
        except Exception as e:
            logger.error(f"Redis ping failed: {e}")
            return False


# Global cache instance
cache = RedisCache()


async def get_cache() -> RedisCache:
    """Dependency for getting cache instance"""
    return cache
