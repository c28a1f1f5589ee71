"""
Shared test setup: run every test against the in-memory backend with
no Redis and no background scheduler.
"""
import os

os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("REDIS_ENABLED", "false")

from datetime import datetime, timedelta

import pytest

from txn_alerts.core.dsa.memory_dsa import (
    InMemoryDetectionSettingsStore,
    InMemoryDispatchAnalyticsStore,
    InMemoryNotificationStore,
    InMemoryPushQueueStore,
    InMemoryQueueStore,
    InMemoryTransactionStore,
)
from txn_alerts.services.anomaly_worker import AlertDispatcher
from txn_alerts.services.notifier import Notifier
from txn_alerts.services.realtime import NotificationBroker


class FakeClock:
    """Deterministic clock for lease and retry timing"""

    def __init__(self, start=datetime(2024, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def stores():
    return {
        "transactions": InMemoryTransactionStore(),
        "queue": InMemoryQueueStore(),
        "notifications": InMemoryNotificationStore(),
        "push_queue": InMemoryPushQueueStore(),
        "analytics": InMemoryDispatchAnalyticsStore(),
        "settings": InMemoryDetectionSettingsStore(),
    }


@pytest.fixture
def broker():
    return NotificationBroker(buffer_size=10)


@pytest.fixture
def make_dispatcher(stores, broker, clock):
    def _make(worker_id="worker-a", **kwargs):
        notifier = Notifier(stores["notifications"], broker, push_queue=stores["push_queue"])
        return AlertDispatcher(
            stores["transactions"],
            stores["queue"],
            notifier,
            settings_store=stores["settings"],
            analytics=stores["analytics"],
            worker_id=worker_id,
            clock=clock,
            **kwargs,
        )
    return _make
