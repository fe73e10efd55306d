"""
Redis Service for the charter booking engine
Idempotent replay of public submissions and rate-limit windows.
Redis is an optimisation here: every helper fails open.
"""

import redis.asyncio as aioredis
import hashlib
import json
import time
from typing import Any, Optional
import logging

from .config import REDIS_URL

logger = logging.getLogger(__name__)


def idempotency_cache_key(scope: str, key: str) -> str:
    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
    return f"idem:{scope}:{digest}"


class RedisService:
    def __init__(self, redis_url: str = REDIS_URL):
        self.redis_url = redis_url
        self.redis_client: Optional[aioredis.Redis] = None

    async def connect(self):
        """Connect to Redis"""
        client = aioredis.from_url(
            self.redis_url,
            encoding="utf-8",
            decode_responses=True
        )
        try:
            await client.ping()
        except Exception as e:
            logger.error(f"❌ Failed to connect to Redis: {e}")
            await client.aclose()
            raise
        self.redis_client = client
        logger.info("✅ Connected to Redis")

    async def disconnect(self):
        """Disconnect from Redis"""
        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None
            logger.info("📴 Disconnected from Redis")

    async def get_json(self, key: str) -> Optional[Any]:
        """Get JSON value from Redis"""
        try:
            value = await self.redis_client.get(key)
            if value:
                return json.loads(value)
            return None
        except Exception as e:
            logger.error(f"Error getting JSON key {key}: {e}")
            return None

    async def set_json(self, key: str, value: Any, expire: Optional[int] = None) -> bool:
        """Set JSON value in Redis with optional expiration"""
        try:
            data = json.dumps(value)
            if expire:
                return bool(await self.redis_client.setex(key, expire, data))
            return bool(await self.redis_client.set(key, data))
        except Exception as e:
            logger.error(f"Error setting JSON key {key}: {e}")
            return False

    # Idempotency

    async def get_idempotent_response(self, scope: str, key: str) -> Optional[Any]:
        return await self.get_json(idempotency_cache_key(scope, key))

    async def store_idempotent_response(self, scope: str, key: str, response: Any, ttl: int) -> bool:
        stored = await self.set_json(idempotency_cache_key(scope, key), response, expire=ttl)
        if stored:
            logger.info(f"💾 Stored idempotent response for {scope}")
        return stored

    async def acquire_lock(self, resource: str, timeout: int = 30) -> bool:
        """
        Mark `resource` as in flight (SET NX EX).
        Returns False only when another holder has it; a Redis error
        counts as acquired.
        """
        try:
            result = await self.redis_client.set(f"lock:{resource}", "locked", nx=True, ex=timeout)
        except Exception as e:
            logger.error(f"Error acquiring lock for {resource}: {e}")
            return True

        if result:
            logger.debug(f"🔒 Acquired lock for {resource}")
            return True
        logger.info(f"⏰ Lock already exists for {resource}")
        return False

    async def release_lock(self, resource: str) -> None:
        try:
            await self.redis_client.delete(f"lock:{resource}")
        except Exception as e:
            logger.error(f"Error releasing lock for {resource}: {e}")

    # Rate limiting

    async def hit_rate_window(self, key: str, window: int) -> int:
        """
        Record one hit in a sliding window and return how many hits were
        already inside it. Raises on Redis errors; callers decide.
        """
        now = time.time()
        window_key = f"rate_limit:{key}"

        pipe = self.redis_client.pipeline()
        pipe.zremrangebyscore(window_key, 0, now - window)
        pipe.zcard(window_key)
        pipe.zadd(window_key, {f"{now:.6f}": now})
        pipe.expire(window_key, window + 10)
        results = await pipe.execute()
        return int(results[1])


# Global Redis service instance
redis_service = RedisService()


# FastAPI dependency
async def get_redis() -> RedisService:
    """Dependency for FastAPI to get Redis service"""
    if not redis_service.redis_client:
        try:
            await redis_service.connect()
        except Exception:
            logger.warning("⚠️ Redis unavailable - continuing without idempotency cache and rate limits")
    return redis_service
