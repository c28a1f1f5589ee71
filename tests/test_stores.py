"""
Store-level tests: retry timing on both backends and tolerant history parsing
"""
import asyncio
from datetime import datetime, timedelta
from types import SimpleNamespace

from txn_alerts.core.dsa.memory_dsa import InMemoryQueueStore
from txn_alerts.core.dsa.mongo_dsa import MongoQueueStore
from txn_alerts.db.models.queue_entry_model import QueueEntry, QueueStatus
from txn_alerts.db.models.transaction_model import parse_transactions


NOW = datetime(2024, 1, 1, 12, 0, 0)


class RecordingCollection:
    """Stands in for a motor collection; records update_many calls"""

    def __init__(self):
        self.updates = []

    async def update_many(self, query, update):
        self.updates.append((query, update))
        return SimpleNamespace(modified_count=0)


def test_failed_entry_without_failed_at_is_timed_from_created_at_in_memory():
    store = InMemoryQueueStore()
    legacy = QueueEntry(
        transaction_id="t-1",
        user_id="user-1",
        status=QueueStatus.FAILED,
        attempts=1,
        created_at=NOW - timedelta(hours=1),
    )
    store.entries[legacy.id] = legacy

    assert asyncio.run(store.requeue_failed(3, 30, 600, NOW)) == 1
    assert store.entries[legacy.id].status == QueueStatus.PENDING.value


def test_failed_entry_without_failed_at_is_timed_from_created_at_in_mongo():
    collection = RecordingCollection()
    store = MongoQueueStore(SimpleNamespace(transaction_alert_queue=collection))

    asyncio.run(store.requeue_failed(3, 30, 600, NOW))

    # one update per attempt bucket below the limit
    assert [q["attempts"] for q, _ in collection.updates] == [0, 1, 2]
    query, update = collection.updates[1]
    cutoff = NOW - timedelta(seconds=30)
    assert query["status"] == "failed"
    assert {"failed_at": {"$lte": cutoff}} in query["$or"]
    assert {"failed_at": None, "created_at": {"$lte": cutoff}} in query["$or"]
    assert update["$set"] == {"status": "pending"}

    last_query, _ = collection.updates[2]
    assert {"failed_at": {"$lte": NOW - timedelta(seconds=60)}} in last_query["$or"]


def test_parse_transactions_skips_malformed_rows():
    rows = [
        {"id": "t-1", "user_id": "user-1", "merchant": "Grocer", "amount": -12.5},
        {"id": "t-bad", "user_id": "user-1", "amount": "lots"},
        {"id": "", "user_id": "user-1", "amount": -1},
        {"id": "t-2", "user_id": "user-1", "merchant": "Cafe", "amount": -3},
    ]

    parsed = parse_transactions(rows)

    assert [t.id for t in parsed] == ["t-1", "t-2"]
