# txn_alerts/services/transaction_service.py
import logging
from typing import Tuple
from datetime import datetime

from txn_alerts.db.models.queue_entry_model import QueueEntry
from txn_alerts.db.models.transaction_model import TransactionModel, new_id
from txn_alerts.db.stores import QueueStore, TransactionStore
from txn_alerts.schemas.transaction_schema import TransactionCreate

logger = logging.getLogger(__name__)


async def ingest_transaction(
    transactions: TransactionStore, queue: QueueStore, data: TransactionCreate
) -> Tuple[TransactionModel, QueueEntry]:
    """
    Store a new transaction and enqueue it for anomaly analysis.
    This is the ingestion trigger: every stored transaction gets exactly one queue entry.
    """
    txn = TransactionModel(
        id=new_id(),
        user_id=data.user_id,
        merchant=data.merchant,
        amount=data.amount,
        category=data.category,
        transaction_date=data.transaction_date or datetime.utcnow(),
    )
    await transactions.insert(txn)
    entry = await queue.enqueue(txn.id, txn.user_id)
    logger.info("Queued transaction %s for user %s (entry %s)", txn.id, txn.user_id, entry.id)
    return txn, entry
