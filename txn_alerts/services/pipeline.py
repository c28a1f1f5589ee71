# txn_alerts/services/pipeline.py
"""
Wires stores, realtime delivery, notifier, dispatcher and scheduler together
for one process. The FastAPI app keeps the result on app.state.pipeline.
"""

from dataclasses import dataclass
from fastapi.requests import HTTPConnection

from txn_alerts.core.config import Settings
from txn_alerts.core.dsa.memory_dsa import (
    InMemoryDetectionSettingsStore,
    InMemoryDispatchAnalyticsStore,
    InMemoryNotificationStore,
    InMemoryPushQueueStore,
    InMemoryQueueStore,
    InMemoryTransactionStore,
)
from txn_alerts.core.dsa.mongo_dsa import (
    MongoDetectionSettingsStore,
    MongoDispatchAnalyticsStore,
    MongoNotificationStore,
    MongoPushQueueStore,
    MongoQueueStore,
    MongoTransactionStore,
)
from txn_alerts.core.dsa.redis_dsa import RedisNotificationPublisher
from txn_alerts.db.stores import (
    DetectionSettingsStore,
    DispatchAnalyticsStore,
    NotificationStore,
    PushQueueStore,
    QueueStore,
    TransactionStore,
)
from txn_alerts.services.anomaly_worker import AlertDispatcher, AlertScheduler
from txn_alerts.services.notifier import Notifier
from txn_alerts.services.realtime import NotificationBroker, NotificationPublisher


@dataclass
class AlertPipeline:
    transactions: TransactionStore
    queue: QueueStore
    notifications: NotificationStore
    push_queue: PushQueueStore
    analytics: DispatchAnalyticsStore
    detection_settings: DetectionSettingsStore
    broker: NotificationBroker
    publisher: NotificationPublisher
    notifier: Notifier
    dispatcher: AlertDispatcher
    scheduler: AlertScheduler


def build_pipeline(settings: Settings, db=None, rc=None) -> AlertPipeline:
    """
    db: Motor database, required when STORAGE_BACKEND is "mongo".
    rc: connected redis.asyncio client, or None for in-process fan-out only.
    """
    if settings.STORAGE_BACKEND == "memory":
        transactions = InMemoryTransactionStore()
        queue = InMemoryQueueStore()
        notifications = InMemoryNotificationStore()
        push_queue = InMemoryPushQueueStore()
        analytics = InMemoryDispatchAnalyticsStore()
        detection_settings = InMemoryDetectionSettingsStore()
    elif settings.STORAGE_BACKEND == "mongo":
        if db is None:
            raise ValueError("STORAGE_BACKEND=mongo requires a database")
        transactions = MongoTransactionStore(db)
        queue = MongoQueueStore(db)
        notifications = MongoNotificationStore(db)
        push_queue = MongoPushQueueStore(db)
        analytics = MongoDispatchAnalyticsStore(db)
        detection_settings = MongoDetectionSettingsStore(db)
    else:
        raise ValueError(f"Unknown STORAGE_BACKEND '{settings.STORAGE_BACKEND}'")

    broker = NotificationBroker(buffer_size=settings.REALTIME_SUBSCRIBER_BUFFER)
    # with Redis, events reach the broker through the relay, on every instance
    publisher: NotificationPublisher = RedisNotificationPublisher(rc) if rc is not None else broker

    notifier = Notifier(notifications, publisher, push_queue=push_queue)
    dispatcher = AlertDispatcher(
        transactions,
        queue,
        notifier,
        settings_store=detection_settings,
        analytics=analytics,
        default_thresholds=settings.detection_thresholds(),
        lease_seconds=settings.LEASE_SECONDS,
        max_batch_size=settings.MAX_BATCH_SIZE,
        history_lookback=settings.HISTORY_LOOKBACK,
        retry_max_attempts=settings.RETRY_MAX_ATTEMPTS,
        retry_base_delay_seconds=settings.RETRY_BASE_DELAY_SECONDS,
        retry_max_delay_seconds=settings.RETRY_MAX_DELAY_SECONDS,
    )
    scheduler = AlertScheduler(dispatcher, poll_interval=settings.DISPATCH_INTERVAL_SECONDS)

    return AlertPipeline(
        transactions=transactions,
        queue=queue,
        notifications=notifications,
        push_queue=push_queue,
        analytics=analytics,
        detection_settings=detection_settings,
        broker=broker,
        publisher=publisher,
        notifier=notifier,
        dispatcher=dispatcher,
        scheduler=scheduler,
    )


def get_pipeline(connection: HTTPConnection) -> AlertPipeline:
    """FastAPI dependency, usable from HTTP routes and websockets"""
    return connection.app.state.pipeline
