"""Trade event publisher over Redis pub/sub."""
from digipay.infra.messaging.redis_bus import RedisBus, redis_bus


def user_events_channel(user_id: str) -> str:
    return f"user:{user_id}:events"


class RedisTradeEventPublisher:
    """Publishes trade events on each participant's channel."""

    def __init__(self, bus: RedisBus = redis_bus):
        self.bus = bus

    async def publish(self, user_id: str, event: dict) -> None:
        await self.bus.publish(user_events_channel(user_id), event)
