import json
import logging

import redis

from .settings import settings

logger = logging.getLogger(__name__)

# Redis client for pub/sub
redis_client: redis.Redis | None = None


def store_channel(store_id: int) -> str:
    return f"orders:store:{store_id}"


def get_redis() -> redis.Redis | None:
    global redis_client
    if redis_client is None:
        try:
            redis_client = redis.from_url(settings.redis_url)
            redis_client.ping()
        except redis.RedisError as e:
            logger.warning(f"Redis unavailable at {settings.redis_url}: {e}")
            redis_client = None
    return redis_client


def publish_order_update(store_id: int, order_data: dict) -> None:
    """Publish an order change to Redis for the WebSocket bridge.

    Subscribers only use the event as a trigger to refetch the order lists,
    so a lost message costs freshness, never correctness.
    """
    r = get_redis()
    if r is None:
        return
    try:
        r.publish(store_channel(store_id), json.dumps(order_data, default=str))
    except redis.RedisError as e:
        logger.warning(f"Failed to publish order update for store {store_id}: {e}")
