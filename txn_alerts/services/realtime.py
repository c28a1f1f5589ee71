# txn_alerts/services/realtime.py
"""
Per-user realtime delivery of transaction alert notifications.

NotificationBroker is an in-process publish/subscribe hub keyed by user id.
Every subscription has a bounded buffer; when a slow client falls behind the
oldest buffered event is dropped and counted. Clients resync through the
notifications list API and deduplicate by notification id.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional, Set

from txn_alerts.db.models.notification_model import Notification

logger = logging.getLogger(__name__)


def notification_channel(user_id: str) -> str:
    return f"notifications:{user_id}"


class NotificationPublisher(ABC):
    @abstractmethod
    async def publish(self, notification: Notification) -> None:
        raise NotImplementedError


class Subscription:
    def __init__(self, user_id: str, buffer_size: int):
        self.user_id = user_id
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=buffer_size)
        self.dropped = 0
        self.closed = False

    def offer(self, notification: Notification) -> None:
        if self.queue.full():
            self.queue.get_nowait()
            self.dropped += 1
            logger.warning(
                "Subscriber buffer full for user %s, dropped oldest event (%d dropped so far)",
                self.user_id, self.dropped,
            )
        self.queue.put_nowait(notification)

    async def get(self, timeout: Optional[float] = None) -> Notification:
        if timeout is None:
            return await self.queue.get()
        return await asyncio.wait_for(self.queue.get(), timeout)


class NotificationBroker(NotificationPublisher):
    def __init__(self, buffer_size: int = 100):
        self.buffer_size = buffer_size
        self._subscribers: Dict[str, Set[Subscription]] = {}

    def subscribe(self, user_id: str) -> Subscription:
        subscription = Subscription(user_id, self.buffer_size)
        self._subscribers.setdefault(user_id, set()).add(subscription)
        logger.debug("Subscribed to %s", notification_channel(user_id))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.closed = True
        subscribers = self._subscribers.get(subscription.user_id)
        if not subscribers:
            return
        subscribers.discard(subscription)
        if not subscribers:
            del self._subscribers[subscription.user_id]

    def subscriber_count(self, user_id: Optional[str] = None) -> int:
        if user_id is not None:
            return len(self._subscribers.get(user_id, ()))
        return sum(len(s) for s in self._subscribers.values())

    def deliver(self, notification: Notification) -> int:
        """Hand the event to the owning user's subscribers only."""
        subscribers = list(self._subscribers.get(notification.user_id, ()))
        for subscription in subscribers:
            subscription.offer(notification)
        return len(subscribers)

    async def publish(self, notification: Notification) -> None:
        self.deliver(notification)
