"""
Tests for per-user realtime fan-out
"""
import asyncio
from datetime import datetime

import pytest

from txn_alerts.db.models.notification_model import Notification, SuspiciousMerchantMetadata
from txn_alerts.services.realtime import NotificationBroker, notification_channel


def make_notification(user_id, transaction_id="t-1"):
    return Notification(
        user_id=user_id,
        title="⚠️ Suspicious Merchant",
        message="Transaction at potentially suspicious merchant: Crypto ATM",
        priority="high",
        created_at=datetime(2024, 1, 1, 12, 0, 0),
        metadata=SuspiciousMerchantMetadata(
            transaction_id=transaction_id,
            merchant="Crypto ATM",
            amount=-50.0,
            risk_level="high",
            confidence=0.85,
            matched_token="crypto",
        ),
    )


def test_channel_name_is_per_user():
    assert notification_channel("user-1") == "notifications:user-1"


def test_events_only_reach_the_owning_user():
    broker = NotificationBroker()
    alice = broker.subscribe("alice")
    bob = broker.subscribe("bob")

    delivered = broker.deliver(make_notification("alice"))

    assert delivered == 1
    assert alice.queue.qsize() == 1
    assert bob.queue.empty()


def test_every_connection_of_a_user_receives_the_event():
    broker = NotificationBroker()
    phone = broker.subscribe("alice")
    laptop = broker.subscribe("alice")

    asyncio.run(broker.publish(make_notification("alice")))

    assert phone.queue.qsize() == 1
    assert laptop.queue.qsize() == 1


def test_full_buffer_drops_oldest_event():
    broker = NotificationBroker(buffer_size=2)
    subscription = broker.subscribe("alice")

    for i in range(3):
        broker.deliver(make_notification("alice", transaction_id=f"t-{i}"))

    assert subscription.dropped == 1
    kept = [subscription.queue.get_nowait().metadata.transaction_id for _ in range(2)]
    assert kept == ["t-1", "t-2"]


def test_unsubscribe_stops_delivery():
    broker = NotificationBroker()
    subscription = broker.subscribe("alice")
    broker.unsubscribe(subscription)

    assert broker.deliver(make_notification("alice")) == 0
    assert subscription.closed is True
    assert broker.subscriber_count() == 0


def test_get_times_out_without_events():
    broker = NotificationBroker()
    subscription = broker.subscribe("alice")

    with pytest.raises(asyncio.TimeoutError):
        asyncio.run(subscription.get(timeout=0.01))
