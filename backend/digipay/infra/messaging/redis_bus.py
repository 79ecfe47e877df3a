"""Redis message bus."""
import json
import logging
from typing import Optional

import redis.asyncio as redis

from digipay.settings import settings

logger = logging.getLogger(__name__)


class RedisBus:
    """Redis message bus for pub/sub and queue."""

    def __init__(self):
        self._redis: Optional[redis.Redis] = None
        self._queue_redis: Optional[redis.Redis] = None

    async def connect(self):
        """Connect to Redis."""
        self._redis = redis.from_url(settings.redis_url, decode_responses=True)
        self._queue_redis = redis.from_url(settings.redis_queue_url, decode_responses=True)
        await self._redis.ping()

    async def disconnect(self):
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
        if self._queue_redis:
            await self._queue_redis.aclose()
        self._redis = None
        self._queue_redis = None

    async def publish(self, channel: str, message: dict):
        """Publish a message to a channel."""
        if not self._redis:
            await self.connect()
        await self._redis.publish(channel, json.dumps(message))

    async def enqueue_job(self, queue_name: str, job_data: dict):
        """Enqueue a job."""
        if not self._queue_redis:
            await self.connect()
        await self._queue_redis.lpush(queue_name, json.dumps(job_data))

    async def get_job(self, queue_name: str) -> Optional[dict]:
        """Get a job from queue (blocking, 1s timeout)."""
        if not self._queue_redis:
            await self.connect()
        result = await self._queue_redis.brpop(queue_name, timeout=1)
        if result:
            _, data = result
            return json.loads(data)
        return None


# Global instance
redis_bus = RedisBus()
