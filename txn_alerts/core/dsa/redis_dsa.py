# txn_alerts/core/dsa/redis_dsa.py
"""
Redis primitives for cross-instance notification fan-out:

- PUBLISH on notifications:<user_id> when a notification is created or replayed
- PSUBSCRIBE notifications:* relay feeding each instance's local broker
"""

import asyncio
import json
import logging
from pydantic import ValidationError
from redis.exceptions import RedisError

from txn_alerts.db.models.notification_model import Notification
from txn_alerts.db.redis_client import safe_json_dumps
from txn_alerts.services.realtime import (
    NotificationBroker,
    NotificationPublisher,
    notification_channel,
)

logger = logging.getLogger(__name__)

CHANNEL_PATTERN = "notifications:*"
RELAY_RETRY_SECONDS = 5.0


class RedisNotificationPublisher(NotificationPublisher):
    def __init__(self, rc):
        self.rc = rc

    async def publish(self, notification: Notification) -> None:
        channel = notification_channel(notification.user_id)
        receivers = await self.rc.publish(channel, safe_json_dumps(notification.model_dump(mode="json")))
        logger.debug("Published notification %s on %s (%s receivers)", notification.id, channel, receivers)


async def relay_redis_notifications(
    rc, broker: NotificationBroker, retry_delay: float = RELAY_RETRY_SECONDS
):
    """
    Background task:
    - Pattern-subscribes to every user's notification channel
    - Delivers each event to local subscribers of the channel's user only
    - Resubscribes after a lost connection instead of dying silently
    """
    while True:
        try:
            await _relay_once(rc, broker)
        except Exception:
            logger.exception("Redis relay lost its subscription, resubscribing in %ss", retry_delay)
        await asyncio.sleep(retry_delay)


async def _relay_once(rc, broker: NotificationBroker):
    pubsub = rc.pubsub()
    try:
        await pubsub.psubscribe(CHANNEL_PATTERN)
        logger.info("📡 Relaying %s to local subscribers", CHANNEL_PATTERN)

        async for message in pubsub.listen():
            if message.get("type") != "pmessage":
                continue
            try:
                notification = Notification.model_validate(json.loads(message["data"]))
            except (json.JSONDecodeError, ValidationError) as e:
                logger.warning("Dropping malformed realtime payload on %s: %s", message.get("channel"), e)
                continue

            # channel is authoritative for routing; never deliver across users
            if message.get("channel") != notification_channel(notification.user_id):
                logger.warning(
                    "Channel %s does not match notification owner, dropping %s",
                    message.get("channel"), notification.id,
                )
                continue
            broker.deliver(notification)
    finally:
        try:
            await pubsub.punsubscribe(CHANNEL_PATTERN)
        except (RedisError, OSError) as e:
            logger.warning("Could not unsubscribe from %s: %s", CHANNEL_PATTERN, e)
        try:
            await pubsub.aclose()
        except (RedisError, OSError) as e:
            logger.warning("Could not close Redis pubsub cleanly: %s", e)


async def stop_relay(task: asyncio.Task) -> None:
    """Cancel the relay task; an error it died with is logged, not re-raised."""
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception:
        logger.exception("Redis relay had stopped with an error")
