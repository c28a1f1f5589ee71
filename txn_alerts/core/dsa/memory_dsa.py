# txn_alerts/core/dsa/memory_dsa.py
"""
In-memory store implementations.

Used by the test-suite and by STORAGE_BACKEND=memory for local runs.
All mutations happen without awaiting in between the check and the write,
so a claim is a single compare-and-swap from the event loop's point of view.
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from txn_alerts.db.models.detection_settings_model import DetectionThresholds
from txn_alerts.db.models.notification_model import Notification
from txn_alerts.db.models.push_queue_model import PushNotificationEntry
from txn_alerts.db.models.queue_entry_model import QueueEntry, QueueStatus
from txn_alerts.db.models.transaction_model import (
    SpendingHistory,
    TransactionModel,
    build_spending_history,
    parse_transactions,
)
from txn_alerts.db.stores import (
    DetectionSettingsStore,
    DispatchAnalyticsStore,
    NotificationStore,
    PushQueueStore,
    QueueStore,
    TransactionStore,
    retry_delay_seconds,
)
from txn_alerts.schemas.dispatch_schema import DispatchReport


def _sort_key(txn: TransactionModel) -> datetime:
    return txn.transaction_date or datetime.min


class InMemoryTransactionStore(TransactionStore):
    def __init__(self):
        self.records: Dict[str, dict] = {}

    async def insert(self, transaction: TransactionModel) -> TransactionModel:
        self.records[transaction.id] = transaction.model_dump()
        return transaction

    def put_raw(self, record: dict) -> None:
        """Store a raw record as-is, bypassing validation (ingestion from elsewhere)."""
        self.records[record.get("id")] = dict(record)

    async def get(self, transaction_id: str) -> Optional[TransactionModel]:
        record = self.records.get(transaction_id)
        if record is None:
            return None
        return TransactionModel.model_validate(record)

    async def list_for_user(self, user_id: str, limit: int = 100) -> List[TransactionModel]:
        txns = parse_transactions(
            r for r in self.records.values() if r.get("user_id") == user_id
        )
        txns.sort(key=_sort_key, reverse=True)
        return txns[:limit]

    async def spending_history(
        self, user_id: str, exclude_transaction_id: Optional[str] = None, lookback: int = 50
    ) -> SpendingHistory:
        txns = [
            t for t in await self.list_for_user(user_id, limit=len(self.records) or 1)
            if t.id != exclude_transaction_id
        ]
        return build_spending_history(txns[:lookback])


class InMemoryQueueStore(QueueStore):
    def __init__(self):
        self.entries: Dict[str, QueueEntry] = {}

    def _by_transaction(self, transaction_id: str) -> Optional[QueueEntry]:
        return next(
            (e for e in self.entries.values() if e.transaction_id == transaction_id), None
        )

    async def enqueue(self, transaction_id: str, user_id: str) -> QueueEntry:
        existing = self._by_transaction(transaction_id)
        if existing is not None:
            return existing.model_copy()
        entry = QueueEntry(transaction_id=transaction_id, user_id=user_id)
        self.entries[entry.id] = entry
        return entry.model_copy()

    async def get(self, entry_id: str) -> Optional[QueueEntry]:
        entry = self.entries.get(entry_id)
        return entry.model_copy() if entry else None

    async def claim_batch(
        self, limit: int, worker_id: str, lease_seconds: int, now: datetime
    ) -> List[QueueEntry]:
        pending = sorted(
            (e for e in self.entries.values() if e.status == QueueStatus.PENDING),
            key=lambda e: e.created_at,
        )
        claimed = []
        for entry in pending[:limit]:
            claimed_entry = entry.model_copy(update={
                "status": QueueStatus.PROCESSING.value,
                "claimed_by": worker_id,
                "claimed_at": now,
                "lease_expires_at": now + timedelta(seconds=lease_seconds),
                "attempts": entry.attempts + 1,
            })
            self.entries[entry.id] = claimed_entry
            claimed.append(claimed_entry.model_copy())
        return claimed

    def _held_by(self, entry_id: str, worker_id: str) -> Optional[QueueEntry]:
        entry = self.entries.get(entry_id)
        if entry is None or entry.status != QueueStatus.PROCESSING or entry.claimed_by != worker_id:
            return None
        return entry

    async def mark_completed(self, entry_id: str, worker_id: str, now: datetime) -> bool:
        entry = self._held_by(entry_id, worker_id)
        if entry is None:
            return False
        self.entries[entry_id] = entry.model_copy(update={
            "status": QueueStatus.COMPLETED.value,
            "processed_at": now,
            "error_message": None,
            "lease_expires_at": None,
        })
        return True

    async def mark_failed(
        self, entry_id: str, worker_id: str, error_message: str, now: datetime
    ) -> bool:
        entry = self._held_by(entry_id, worker_id)
        if entry is None:
            return False
        self.entries[entry_id] = entry.model_copy(update={
            "status": QueueStatus.FAILED.value,
            "error_message": error_message,
            "failed_at": now,
            "lease_expires_at": None,
        })
        return True

    async def reclaim_expired(self, now: datetime) -> int:
        reclaimed = 0
        for entry_id, entry in list(self.entries.items()):
            if (
                entry.status == QueueStatus.PROCESSING
                and entry.lease_expires_at is not None
                and entry.lease_expires_at <= now
            ):
                self.entries[entry_id] = entry.model_copy(update={
                    "status": QueueStatus.PENDING.value,
                    "claimed_by": None,
                    "claimed_at": None,
                    "lease_expires_at": None,
                })
                reclaimed += 1
        return reclaimed

    async def requeue_failed(
        self, max_attempts: int, base_delay_seconds: int, max_delay_seconds: int, now: datetime
    ) -> int:
        requeued = 0
        for entry_id, entry in list(self.entries.items()):
            if entry.status != QueueStatus.FAILED or entry.attempts >= max_attempts:
                continue
            delay = retry_delay_seconds(entry.attempts, base_delay_seconds, max_delay_seconds)
            failed_at = entry.failed_at or entry.created_at
            if failed_at + timedelta(seconds=delay) > now:
                continue
            self.entries[entry_id] = entry.model_copy(update={
                "status": QueueStatus.PENDING.value,
                "error_message": None,
                "failed_at": None,
                "claimed_by": None,
                "claimed_at": None,
            })
            requeued += 1
        return requeued

    async def count_by_status(self) -> Dict[str, int]:
        counts = {s.value: 0 for s in QueueStatus}
        for entry in self.entries.values():
            counts[QueueStatus(entry.status).value] += 1
        return counts

    async def list_entries(self, status: Optional[str] = None, limit: int = 100) -> List[QueueEntry]:
        entries = sorted(self.entries.values(), key=lambda e: e.created_at)
        if status:
            entries = [e for e in entries if e.status == status]
        return [e.model_copy() for e in entries[:limit]]


class InMemoryNotificationStore(NotificationStore):
    def __init__(self):
        self.notifications: Dict[str, Notification] = {}

    async def create(self, notification: Notification) -> Tuple[Notification, bool]:
        existing = await self.get_by_transaction(notification.metadata.transaction_id)
        if existing is not None and existing.notification_type == notification.notification_type:
            return existing, False
        self.notifications[notification.id] = notification
        return notification, True

    async def get_by_transaction(self, transaction_id: str) -> Optional[Notification]:
        return next(
            (n for n in self.notifications.values() if n.metadata.transaction_id == transaction_id),
            None,
        )

    async def list_for_user(
        self, user_id: str, unread_only: bool = False, limit: int = 50
    ) -> List[Notification]:
        items = [
            n for n in self.notifications.values()
            if n.user_id == user_id and not (unread_only and n.read)
        ]
        items.sort(key=lambda n: n.created_at, reverse=True)
        return items[:limit]

    async def unread_count(self, user_id: str) -> int:
        return sum(1 for n in self.notifications.values() if n.user_id == user_id and not n.read)

    async def mark_read(self, notification_id: str, user_id: str) -> bool:
        notification = self.notifications.get(notification_id)
        if notification is None or notification.user_id != user_id:
            return False
        self.notifications[notification_id] = notification.model_copy(update={"read": True})
        return True


class InMemoryPushQueueStore(PushQueueStore):
    def __init__(self):
        self.entries: Dict[str, PushNotificationEntry] = {}

    async def enqueue(self, entry: PushNotificationEntry) -> Tuple[PushNotificationEntry, bool]:
        existing = next(
            (e for e in self.entries.values() if e.notification_id == entry.notification_id), None
        )
        if existing is not None:
            return existing, False
        self.entries[entry.id] = entry
        return entry, True

    async def list_entries(
        self, user_id: Optional[str] = None, status: Optional[str] = None, limit: int = 100
    ) -> List[PushNotificationEntry]:
        items = [
            e for e in self.entries.values()
            if (user_id is None or e.user_id == user_id) and (status is None or e.status == status)
        ]
        items.sort(key=lambda e: e.created_at)
        return items[:limit]


class InMemoryDispatchAnalyticsStore(DispatchAnalyticsStore):
    def __init__(self):
        self.reports: List[DispatchReport] = []

    async def record(self, report: DispatchReport) -> None:
        self.reports.append(report.model_copy(deep=True))

    async def recent(self, limit: int = 20) -> List[DispatchReport]:
        return list(reversed(self.reports))[:limit]


class InMemoryDetectionSettingsStore(DetectionSettingsStore):
    def __init__(self, thresholds: Optional[DetectionThresholds] = None):
        self.thresholds = thresholds
        self.updated_by: Optional[str] = None

    async def get_thresholds(self) -> Optional[DetectionThresholds]:
        return self.thresholds

    async def save_thresholds(
        self, thresholds: DetectionThresholds, updated_by: Optional[str] = None
    ) -> None:
        self.thresholds = thresholds
        self.updated_by = updated_by
