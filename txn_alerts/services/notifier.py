# txn_alerts/services/notifier.py
"""
Turns a positive AnomalyResult into a persisted wallet notification and
pushes it to the owning user's realtime channel.
"""

import logging
from typing import Optional

from txn_alerts.db.models.notification_model import Notification, metadata_adapter
from txn_alerts.db.models.push_queue_model import (
    TRANSACTION_ANOMALY,
    PushContent,
    PushNotificationEntry,
)
from txn_alerts.db.models.transaction_model import TransactionModel
from txn_alerts.db.stores import NotificationStore, PushQueueStore
from txn_alerts.schemas.anomaly_schema import AlertType, AnomalyResult
from txn_alerts.services.realtime import NotificationPublisher

logger = logging.getLogger(__name__)

ALERT_TITLES = {
    AlertType.UNUSUAL_AMOUNT: "⚠️ Unusual Transaction",
    AlertType.DUPLICATE_CHARGE: "⚠️ Possible Duplicate Charge",
    AlertType.SUSPICIOUS_MERCHANT: "⚠️ Suspicious Merchant",
    AlertType.CATEGORY_OVERSPEND: "⚠️ Category Overspend",
}


def build_notification(
    transaction: TransactionModel,
    result: AnomalyResult,
    latency_ms: Optional[float] = None,
    model: Optional[str] = None,
) -> Notification:
    alert_type = AlertType(result.alert_type)

    metadata = {
        "transaction_id": transaction.id,
        "merchant": transaction.merchant,
        "amount": transaction.amount,
        "category": transaction.category,
        "alert_type": alert_type.value,
        "risk_level": result.risk_level,
        "confidence": result.confidence,
        "latency_ms": latency_ms,
        "model": model,
    }
    if result.evidence is not None:
        metadata.update(result.evidence.model_dump())

    return Notification(
        user_id=transaction.user_id,
        title=ALERT_TITLES.get(alert_type, "⚠️ Transaction Alert"),
        message=result.reason or f"Unusual activity at {transaction.merchant}",
        priority=result.risk_level,
        metadata=metadata_adapter.validate_python(metadata),
    )


def build_push_entry(
    notification: Notification, transaction: TransactionModel
) -> PushNotificationEntry:
    metadata = notification.metadata
    return PushNotificationEntry(
        notification_id=notification.id,
        user_id=notification.user_id,
        subject=f"⚠️ {transaction.merchant}",
        content=PushContent(
            title=notification.title,
            body=notification.message,
            data={
                "type": TRANSACTION_ANOMALY,
                "notification_id": notification.id,
                "transaction_id": transaction.id,
                "alert_type": metadata.alert_type,
                "risk_level": metadata.risk_level,
                "latency_ms": metadata.latency_ms,
                "model": metadata.model,
            },
        ),
    )


class Notifier:
    def __init__(
        self,
        store: NotificationStore,
        publisher: Optional[NotificationPublisher] = None,
        push_queue: Optional[PushQueueStore] = None,
    ):
        self.store = store
        self.publisher = publisher
        self.push_queue = push_queue

    async def notify(
        self,
        transaction: TransactionModel,
        result: AnomalyResult,
        latency_ms: Optional[float] = None,
        model: Optional[str] = None,
    ) -> Optional[Notification]:
        """
        No-op for non-anomalous results. Otherwise persists one notification per
        transaction (a replay returns the existing record) and publishes it.
        Publishing on replay is intentional: delivery is at-least-once.
        The push row is keyed by notification id, so a replay only fills in
        a push that a crashed run never wrote.
        """
        if not result.is_anomaly:
            return None

        notification = build_notification(transaction, result, latency_ms=latency_ms, model=model)
        stored, created = await self.store.create(notification)

        if created:
            logger.info(
                "Created %s notification %s for transaction %s (user %s)",
                stored.priority, stored.id, transaction.id, transaction.user_id,
            )
        else:
            logger.info(
                "Notification for transaction %s already exists (%s), not creating another",
                transaction.id, stored.id,
            )

        if self.push_queue is not None:
            _, queued = await self.push_queue.enqueue(build_push_entry(stored, transaction))
            if queued:
                logger.info("Queued push for notification %s", stored.id)

        if self.publisher is not None:
            await self.publisher.publish(stored)

        return stored
