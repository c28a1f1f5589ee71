# txn_alerts/core/dsa/mongo_dsa.py
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from txn_alerts.db.models.detection_settings_model import (
    DetectionSettingsDocument,
    DetectionThresholds,
)
from txn_alerts.db.models.notification_model import TRANSACTION_ALERT, Notification
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

NO_MONGO_ID = {"_id": 0}


def retry_due_filter(attempts: int, cutoff: datetime) -> dict:
    """Failed entries with this attempt count whose backoff ended by cutoff.
    Entries without failed_at are timed from created_at."""
    return {
        "status": QueueStatus.FAILED.value,
        "attempts": attempts,
        "$or": [
            {"failed_at": {"$lte": cutoff}},
            {"failed_at": None, "created_at": {"$lte": cutoff}},
        ],
    }


class MongoDSA:
    def __init__(self, db):
        """
        db is Motor database object (async)
        e.g. db = await get_database()
        """
        self.db = db

    # create helpful indexes (run at startup)
    async def ensure_indexes(self):
        await self.db.transactions.create_index("id", unique=True)
        await self.db.transactions.create_index([("user_id", 1), ("transaction_date", -1)])

        queue = self.db.transaction_alert_queue
        await queue.create_index("id", unique=True)
        await queue.create_index("transaction_id", unique=True)
        await queue.create_index([("status", 1), ("created_at", 1)])
        await queue.create_index([("status", 1), ("lease_expires_at", 1)])

        notifications = self.db.wallet_notifications
        await notifications.create_index("id", unique=True)
        await notifications.create_index(
            [("metadata.transaction_id", 1), ("notification_type", 1)], unique=True
        )
        await notifications.create_index([("user_id", 1), ("created_at", -1)])

        push_queue = self.db.notification_queue
        await push_queue.create_index("notification_id", unique=True)
        await push_queue.create_index([("status", 1), ("created_at", 1)])

        await self.db.batch_processing_analytics.create_index("batch_id", unique=True)
        await self.db.batch_processing_analytics.create_index([("started_at", -1)])


class MongoTransactionStore(TransactionStore):
    def __init__(self, db):
        self.collection = db.transactions

    async def insert(self, transaction: TransactionModel) -> TransactionModel:
        await self.collection.insert_one(transaction.model_dump())
        return transaction

    async def get(self, transaction_id: str) -> Optional[TransactionModel]:
        doc = await self.collection.find_one({"id": transaction_id}, NO_MONGO_ID)
        return TransactionModel.model_validate(doc) if doc else None

    async def list_for_user(self, user_id: str, limit: int = 100) -> List[TransactionModel]:
        cursor = (
            self.collection.find({"user_id": user_id}, NO_MONGO_ID)
            .sort("transaction_date", DESCENDING)
            .limit(limit)
        )
        docs = await cursor.to_list(length=limit)
        return parse_transactions(docs)

    async def spending_history(
        self, user_id: str, exclude_transaction_id: Optional[str] = None, lookback: int = 50
    ) -> SpendingHistory:
        q = {"user_id": user_id}
        if exclude_transaction_id:
            q["id"] = {"$ne": exclude_transaction_id}

        cursor = self.collection.find(q, NO_MONGO_ID).sort("transaction_date", DESCENDING).limit(lookback)
        docs = await cursor.to_list(length=lookback)
        return build_spending_history(parse_transactions(docs))


class MongoQueueStore(QueueStore):
    def __init__(self, db):
        self.collection = db.transaction_alert_queue

    async def enqueue(self, transaction_id: str, user_id: str) -> QueueEntry:
        entry = QueueEntry(transaction_id=transaction_id, user_id=user_id)
        try:
            await self.collection.insert_one(entry.model_dump())
        except DuplicateKeyError:
            doc = await self.collection.find_one({"transaction_id": transaction_id}, NO_MONGO_ID)
            return QueueEntry.model_validate(doc)
        return entry

    async def get(self, entry_id: str) -> Optional[QueueEntry]:
        doc = await self.collection.find_one({"id": entry_id}, NO_MONGO_ID)
        return QueueEntry.model_validate(doc) if doc else None

    async def claim_batch(
        self, limit: int, worker_id: str, lease_seconds: int, now: datetime
    ) -> List[QueueEntry]:
        claimed = []
        # one conditional update per entry: only a document still pending can be claimed
        for _ in range(limit):
            doc = await self.collection.find_one_and_update(
                {"status": QueueStatus.PENDING.value},
                {
                    "$set": {
                        "status": QueueStatus.PROCESSING.value,
                        "claimed_by": worker_id,
                        "claimed_at": now,
                        "lease_expires_at": now + timedelta(seconds=lease_seconds),
                    },
                    "$inc": {"attempts": 1},
                },
                sort=[("created_at", ASCENDING)],
                projection=NO_MONGO_ID,
                return_document=ReturnDocument.AFTER,
            )
            if doc is None:
                break
            claimed.append(QueueEntry.model_validate(doc))
        return claimed

    async def mark_completed(self, entry_id: str, worker_id: str, now: datetime) -> bool:
        result = await self.collection.update_one(
            {"id": entry_id, "status": QueueStatus.PROCESSING.value, "claimed_by": worker_id},
            {
                "$set": {"status": QueueStatus.COMPLETED.value, "processed_at": now},
                "$unset": {"error_message": "", "lease_expires_at": ""},
            },
        )
        return result.modified_count == 1

    async def mark_failed(
        self, entry_id: str, worker_id: str, error_message: str, now: datetime
    ) -> bool:
        result = await self.collection.update_one(
            {"id": entry_id, "status": QueueStatus.PROCESSING.value, "claimed_by": worker_id},
            {
                "$set": {
                    "status": QueueStatus.FAILED.value,
                    "error_message": error_message,
                    "failed_at": now,
                },
                "$unset": {"lease_expires_at": ""},
            },
        )
        return result.modified_count == 1

    async def reclaim_expired(self, now: datetime) -> int:
        result = await self.collection.update_many(
            {"status": QueueStatus.PROCESSING.value, "lease_expires_at": {"$lte": now}},
            {
                "$set": {"status": QueueStatus.PENDING.value},
                "$unset": {"claimed_by": "", "claimed_at": "", "lease_expires_at": ""},
            },
        )
        return result.modified_count

    async def requeue_failed(
        self, max_attempts: int, base_delay_seconds: int, max_delay_seconds: int, now: datetime
    ) -> int:
        requeued = 0
        # backoff depends on each entry's attempt count, so requeue per attempt bucket
        for attempts in range(max_attempts):
            delay = retry_delay_seconds(attempts, base_delay_seconds, max_delay_seconds)
            result = await self.collection.update_many(
                retry_due_filter(attempts, now - timedelta(seconds=delay)),
                {
                    "$set": {"status": QueueStatus.PENDING.value},
                    "$unset": {"error_message": "", "failed_at": "", "claimed_by": "", "claimed_at": ""},
                },
            )
            requeued += result.modified_count
        return requeued

    async def count_by_status(self) -> Dict[str, int]:
        counts = {s.value: 0 for s in QueueStatus}
        pipeline = [{"$group": {"_id": "$status", "count": {"$sum": 1}}}]
        cursor = self.collection.aggregate(pipeline)
        for row in await cursor.to_list(length=len(counts)):
            counts[row["_id"]] = row["count"]
        return counts

    async def list_entries(self, status: Optional[str] = None, limit: int = 100) -> List[QueueEntry]:
        q = {"status": status} if status else {}
        cursor = self.collection.find(q, NO_MONGO_ID).sort("created_at", ASCENDING).limit(limit)
        docs = await cursor.to_list(length=limit)
        return [QueueEntry.model_validate(d) for d in docs]


class MongoNotificationStore(NotificationStore):
    def __init__(self, db):
        self.collection = db.wallet_notifications

    async def create(self, notification: Notification) -> Tuple[Notification, bool]:
        try:
            await self.collection.insert_one(notification.model_dump())
        except DuplicateKeyError:
            existing = await self.get_by_transaction(notification.metadata.transaction_id)
            if existing is None:
                raise
            return existing, False
        return notification, True

    async def get_by_transaction(self, transaction_id: str) -> Optional[Notification]:
        doc = await self.collection.find_one(
            {"metadata.transaction_id": transaction_id, "notification_type": TRANSACTION_ALERT},
            NO_MONGO_ID,
        )
        return Notification.model_validate(doc) if doc else None

    async def list_for_user(
        self, user_id: str, unread_only: bool = False, limit: int = 50
    ) -> List[Notification]:
        q = {"user_id": user_id, "notification_type": TRANSACTION_ALERT}
        if unread_only:
            q["read"] = False
        cursor = self.collection.find(q, NO_MONGO_ID).sort("created_at", DESCENDING).limit(limit)
        docs = await cursor.to_list(length=limit)
        return [Notification.model_validate(d) for d in docs]

    async def unread_count(self, user_id: str) -> int:
        return await self.collection.count_documents(
            {"user_id": user_id, "notification_type": TRANSACTION_ALERT, "read": False}
        )

    async def mark_read(self, notification_id: str, user_id: str) -> bool:
        result = await self.collection.update_one(
            {"id": notification_id, "user_id": user_id},
            {"$set": {"read": True}},
        )
        return result.matched_count == 1


class MongoPushQueueStore(PushQueueStore):
    def __init__(self, db):
        self.collection = db.notification_queue

    async def enqueue(self, entry: PushNotificationEntry) -> Tuple[PushNotificationEntry, bool]:
        try:
            await self.collection.insert_one(entry.model_dump())
        except DuplicateKeyError:
            doc = await self.collection.find_one({"notification_id": entry.notification_id}, NO_MONGO_ID)
            if doc is None:
                raise
            return PushNotificationEntry.model_validate(doc), False
        return entry, True

    async def list_entries(
        self, user_id: Optional[str] = None, status: Optional[str] = None, limit: int = 100
    ) -> List[PushNotificationEntry]:
        q = {}
        if user_id:
            q["user_id"] = user_id
        if status:
            q["status"] = status
        cursor = self.collection.find(q, NO_MONGO_ID).sort("created_at", ASCENDING).limit(limit)
        docs = await cursor.to_list(length=limit)
        return [PushNotificationEntry.model_validate(d) for d in docs]


class MongoDispatchAnalyticsStore(DispatchAnalyticsStore):
    def __init__(self, db):
        self.collection = db.batch_processing_analytics

    async def record(self, report: DispatchReport) -> None:
        await self.collection.insert_one(report.model_dump())

    async def recent(self, limit: int = 20) -> List[DispatchReport]:
        cursor = self.collection.find({}, NO_MONGO_ID).sort("started_at", DESCENDING).limit(limit)
        docs = await cursor.to_list(length=limit)
        return [DispatchReport.model_validate(d) for d in docs]


class MongoDetectionSettingsStore(DetectionSettingsStore):
    def __init__(self, db):
        self.collection = db.system_settings

    async def get_thresholds(self) -> Optional[DetectionThresholds]:
        doc = await self.collection.find_one({}, {"transaction_alerts": 1})
        if not doc or not doc.get("transaction_alerts"):
            return None
        return DetectionSettingsDocument.model_validate(doc["transaction_alerts"]).thresholds

    async def save_thresholds(
        self, thresholds: DetectionThresholds, updated_by: Optional[str] = None
    ) -> None:
        block = DetectionSettingsDocument(thresholds=thresholds, updated_by=updated_by)
        await self.collection.update_one(
            {}, {"$set": {"transaction_alerts": block.model_dump()}}, upsert=True
        )
