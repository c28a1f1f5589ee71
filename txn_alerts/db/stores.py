# txn_alerts/db/stores.py
"""
Storage interfaces used by the alert pipeline.

The dispatcher, notifier and routes only talk to these; MongoDB and
in-memory implementations live in txn_alerts.core.dsa.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from txn_alerts.db.models.detection_settings_model import DetectionThresholds
from txn_alerts.db.models.notification_model import Notification
from txn_alerts.db.models.push_queue_model import PushNotificationEntry
from txn_alerts.db.models.queue_entry_model import QueueEntry
from txn_alerts.db.models.transaction_model import SpendingHistory, TransactionModel
from txn_alerts.schemas.dispatch_schema import DispatchReport


class TransactionStore(ABC):
    @abstractmethod
    async def insert(self, transaction: TransactionModel) -> TransactionModel:
        raise NotImplementedError

    @abstractmethod
    async def get(self, transaction_id: str) -> Optional[TransactionModel]:
        """Load one transaction. A malformed stored record raises ValidationError."""
        raise NotImplementedError

    @abstractmethod
    async def list_for_user(self, user_id: str, limit: int = 100) -> List[TransactionModel]:
        raise NotImplementedError

    @abstractmethod
    async def spending_history(
        self, user_id: str, exclude_transaction_id: Optional[str] = None, lookback: int = 50
    ) -> SpendingHistory:
        raise NotImplementedError


class QueueStore(ABC):
    @abstractmethod
    async def enqueue(self, transaction_id: str, user_id: str) -> QueueEntry:
        """Create a pending entry. Enqueuing the same transaction twice returns the existing entry."""
        raise NotImplementedError

    @abstractmethod
    async def get(self, entry_id: str) -> Optional[QueueEntry]:
        raise NotImplementedError

    @abstractmethod
    async def claim_batch(
        self, limit: int, worker_id: str, lease_seconds: int, now: datetime
    ) -> List[QueueEntry]:
        """Atomically move up to `limit` pending entries (oldest first) to processing."""
        raise NotImplementedError

    @abstractmethod
    async def mark_completed(self, entry_id: str, worker_id: str, now: datetime) -> bool:
        """False when the lease is no longer held by worker_id."""
        raise NotImplementedError

    @abstractmethod
    async def mark_failed(
        self, entry_id: str, worker_id: str, error_message: str, now: datetime
    ) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def reclaim_expired(self, now: datetime) -> int:
        """Return processing entries whose lease expired to pending."""
        raise NotImplementedError

    @abstractmethod
    async def requeue_failed(
        self, max_attempts: int, base_delay_seconds: int, max_delay_seconds: int, now: datetime
    ) -> int:
        raise NotImplementedError

    @abstractmethod
    async def count_by_status(self) -> Dict[str, int]:
        raise NotImplementedError

    @abstractmethod
    async def list_entries(self, status: Optional[str] = None, limit: int = 100) -> List[QueueEntry]:
        raise NotImplementedError


class NotificationStore(ABC):
    @abstractmethod
    async def create(self, notification: Notification) -> Tuple[Notification, bool]:
        """
        Persist a notification unless one already exists for the same
        (transaction_id, notification_type). Returns (stored, created).
        """
        raise NotImplementedError

    @abstractmethod
    async def get_by_transaction(self, transaction_id: str) -> Optional[Notification]:
        raise NotImplementedError

    @abstractmethod
    async def list_for_user(
        self, user_id: str, unread_only: bool = False, limit: int = 50
    ) -> List[Notification]:
        raise NotImplementedError

    @abstractmethod
    async def unread_count(self, user_id: str) -> int:
        raise NotImplementedError

    @abstractmethod
    async def mark_read(self, notification_id: str, user_id: str) -> bool:
        raise NotImplementedError


class PushQueueStore(ABC):
    @abstractmethod
    async def enqueue(self, entry: PushNotificationEntry) -> Tuple[PushNotificationEntry, bool]:
        """At most one push per notification. Returns (stored, created)."""
        raise NotImplementedError

    @abstractmethod
    async def list_entries(
        self, user_id: Optional[str] = None, status: Optional[str] = None, limit: int = 100
    ) -> List[PushNotificationEntry]:
        raise NotImplementedError


class DispatchAnalyticsStore(ABC):
    @abstractmethod
    async def record(self, report: DispatchReport) -> None:
        raise NotImplementedError

    @abstractmethod
    async def recent(self, limit: int = 20) -> List[DispatchReport]:
        """Newest runs first"""
        raise NotImplementedError


class DetectionSettingsStore(ABC):
    @abstractmethod
    async def get_thresholds(self) -> Optional[DetectionThresholds]:
        raise NotImplementedError

    @abstractmethod
    async def save_thresholds(
        self, thresholds: DetectionThresholds, updated_by: Optional[str] = None
    ) -> None:
        raise NotImplementedError


def retry_delay_seconds(attempts: int, base_delay_seconds: int, max_delay_seconds: int) -> int:
    """Exponential backoff before a failed entry becomes pending again."""
    exponent = max(attempts - 1, 0)
    return min(base_delay_seconds * (2 ** exponent), max_delay_seconds)
