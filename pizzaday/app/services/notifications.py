"""
Redis pub/sub publisher for slot-capacity and order-status events.

Events are a cache-invalidation hint for connected clients: delivery is
best-effort and a publish failure never fails the operation that caused it.
"""
import json
from typing import Any, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from pizzaday.app.core.logging import get_logger
from pizzaday.app.core.settings import get_settings

logger = get_logger(__name__)

SLOT_CHANNEL = "time_slots:{pizza_day_id}"
ORDER_CHANNEL = "order:{public_id}"


def slot_channel(pizza_day_id: int) -> str:
    return SLOT_CHANNEL.format(pizza_day_id=pizza_day_id)


def order_channel(public_id: str) -> str:
    return ORDER_CHANNEL.format(public_id=public_id)


class EventPublisher:
    """Publishes JSON events on Redis channels."""

    _redis: Optional[Redis] = None

    @classmethod
    async def get_redis(cls) -> Redis:
        """Get or create the shared Redis connection."""
        if cls._redis is None:
            settings = get_settings()
            cls._redis = Redis(
                host=settings.REDIS_HOST,
                port=settings.REDIS_PORT,
                db=settings.REDIS_DB,
                decode_responses=True,
            )
        return cls._redis

    @classmethod
    async def close(cls):
        """Close Redis connection."""
        if cls._redis:
            await cls._redis.aclose()
            cls._redis = None

    def __init__(self, redis: Redis):
        self.redis = redis

    async def publish(self, channel: str, payload: dict[str, Any]) -> bool:
        """Publish one event. Returns False (and logs) when Redis is unreachable."""
        try:
            await self.redis.publish(channel, json.dumps(payload, default=str))
            return True
        except (RedisError, OSError) as e:
            logger.warning("Event publish failed", channel=channel, error=str(e))
            return False

    async def publish_slot_event(self, pizza_day_id: int, payload: dict[str, Any]) -> bool:
        return await self.publish(slot_channel(pizza_day_id), {"type": "time_slot", **payload})

    async def publish_order_event(self, public_id: str, payload: dict[str, Any]) -> bool:
        return await self.publish(order_channel(public_id), {"type": "order", **payload})
