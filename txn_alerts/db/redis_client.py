# txn_alerts/db/redis_client.py
import json
import logging
from datetime import datetime
from typing import Any, Optional
import redis.asyncio as redis

from txn_alerts.core.config import settings

logger = logging.getLogger(__name__)


class RedisClient:
    client: Optional[redis.Redis] = None


redis_client = RedisClient()


def datetime_serializer(obj):
    """Convert datetime objects to ISO format strings"""
    if isinstance(obj, datetime):
        return obj.isoformat()
    raise TypeError(f"Type {type(obj)} not serializable")


def safe_json_dumps(data: Any) -> str:
    """Serialize data to JSON, handling datetime objects"""
    return json.dumps(data, default=datetime_serializer)


# 🔹 Connect Redis (called on startup). Returns None when Redis is unreachable.
async def connect_to_redis() -> Optional[redis.Redis]:
    if not settings.REDIS_ENABLED:
        logger.info("Redis disabled by configuration")
        return None

    client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        await client.ping()
    except redis.RedisError as e:
        logger.warning("⚠️ Redis connection failed: %s. Realtime fan-out stays in-process", e)
        await client.aclose()
        return None

    redis_client.client = client
    logger.info("✅ Redis connected successfully")
    return client


# 🔹 Close connection (shutdown)
async def close_redis_connection():
    if redis_client.client is not None:
        await redis_client.client.aclose()
        redis_client.client = None
        logger.info("Redis connection closed")
