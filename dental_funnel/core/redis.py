import json
from redis import asyncio as aioredis
from .config import settings


class RedisManager:
    def __init__(self):
        self.redis = None

    async def connect(self):
        """Connect to Redis (called on FastAPI startup)."""
        self.redis = await aioredis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True
        )

    async def close(self):
        """Close Redis connection."""
        if self.redis:
            await self.redis.close()

    async def set_json(self, key: str, data: dict, ttl_seconds: int):
        await self.redis.setex(key, ttl_seconds, json.dumps(data))

    async def get_json(self, key: str) -> dict | None:
        data = await self.redis.get(key)
        if data:
            return json.loads(data)
        return None

redis_manager = RedisManager()
