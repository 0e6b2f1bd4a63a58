"""Redis implementation of the cache store."""

import logging

import redis.asyncio as redis

from quote_pipeline.config.state import RedisConfig

logger = logging.getLogger(__name__)


class RedisCacheStore:
    """ICacheStore over redis.asyncio."""

    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def from_config(cls, config: RedisConfig) -> "RedisCacheStore":
        return cls(redis.Redis.from_url(config.redis_url, decode_responses=True))

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        await self.client.setex(key, ttl_seconds, value)

    async def hash_set_field(self, key: str, field: str, value: str) -> None:
        await self.client.hset(key, field, value)

    async def expire(self, key: str, ttl_seconds: int) -> None:
        await self.client.expire(key, ttl_seconds)

    async def incr(self, key: str) -> int:
        return int(await self.client.incr(key))

    async def count_keys(self, pattern: str) -> int:
        count = 0
        async for _ in self.client.scan_iter(match=pattern, count=500):
            count += 1
        return count

    async def close(self) -> None:
        await self.client.aclose()
        logger.info("Redis connection closed")
