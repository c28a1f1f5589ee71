# txn_alerts/services/anomaly_worker.py
import asyncio
import logging
import time
import uuid
from datetime import datetime
from typing import Callable, List, Optional
from txn_alerts.core.exceptions import InvalidTransactionError, TransactionNotFoundError
from txn_alerts.core.transaction_rule_based import classify_transaction
from txn_alerts.db.models.detection_settings_model import DetectionThresholds
from txn_alerts.db.models.queue_entry_model import QueueEntry, QueueStatus
from txn_alerts.db.stores import (
    DetectionSettingsStore,
    DispatchAnalyticsStore,
    QueueStore,
    TransactionStore,
)
from txn_alerts.schemas.dispatch_schema import DispatchReport, EntryResult
from txn_alerts.services.notifier import Notifier

logger = logging.getLogger(__name__)


# --------------------------------------------------
# ADAPTIVE BATCH SIZING (by pending queue depth)
# --------------------------------------------------
BATCH_SIZING = (
    (5, 5),      # depth <= 5  -> 5
    (20, 10),    # depth <= 20 -> 10
    (50, 15),    # depth <= 50 -> 15
)
PEAK_BATCH_SIZE = 20

# Entry outcomes besides the queue statuses
LEASE_LOST = "lease_lost"        # another worker holds the entry now
UNRECORDED = "unrecorded"        # the failure could not be written to the queue


def calculate_batch_size(queue_depth: int, max_batch_size: int = PEAK_BATCH_SIZE) -> int:
    for depth_limit, size in BATCH_SIZING:
        if queue_depth <= depth_limit:
            return min(size, max_batch_size)
    return min(PEAK_BATCH_SIZE, max_batch_size)


class AlertDispatcher:
    """
    Claims pending queue entries and runs them through classification and
    notification. Every entry is isolated: a failure marks only that entry
    failed, the rest of the batch carries on.
    """

    def __init__(
        self,
        transactions: TransactionStore,
        queue: QueueStore,
        notifier: Notifier,
        settings_store: Optional[DetectionSettingsStore] = None,
        analytics: Optional[DispatchAnalyticsStore] = None,
        default_thresholds: Optional[DetectionThresholds] = None,
        lease_seconds: int = 120,
        max_batch_size: int = PEAK_BATCH_SIZE,
        history_lookback: int = 50,
        retry_max_attempts: int = 3,
        retry_base_delay_seconds: int = 30,
        retry_max_delay_seconds: int = 600,
        worker_id: Optional[str] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.transactions = transactions
        self.queue = queue
        self.notifier = notifier
        self.settings_store = settings_store
        self.analytics = analytics
        self.default_thresholds = default_thresholds or DetectionThresholds()
        self.lease_seconds = lease_seconds
        self.max_batch_size = max_batch_size
        self.history_lookback = history_lookback
        self.retry_max_attempts = retry_max_attempts
        self.retry_base_delay_seconds = retry_base_delay_seconds
        self.retry_max_delay_seconds = retry_max_delay_seconds
        self.worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        self.clock = clock

    async def current_thresholds(self) -> DetectionThresholds:
        if self.settings_store is None:
            return self.default_thresholds
        stored = await self.settings_store.get_thresholds()
        return stored or self.default_thresholds

    async def claim_batch(self, limit: int) -> List[QueueEntry]:
        return await self.queue.claim_batch(limit, self.worker_id, self.lease_seconds, self.clock())

    async def run_once(self, limit: Optional[int] = None) -> DispatchReport:
        now = self.clock()
        started = time.perf_counter()
        report = DispatchReport(worker_id=self.worker_id, started_at=now)

        report.reclaimed = await self.queue.reclaim_expired(now)
        if report.reclaimed:
            logger.warning("Reclaimed %d queue entries with expired leases", report.reclaimed)

        report.requeued = await self.queue.requeue_failed(
            self.retry_max_attempts,
            self.retry_base_delay_seconds,
            self.retry_max_delay_seconds,
            now,
        )
        if report.requeued:
            logger.info("Requeued %d failed entries for retry", report.requeued)

        counts = await self.queue.count_by_status()
        report.queue_depth = counts.get(QueueStatus.PENDING.value, 0)
        if report.queue_depth == 0:
            return report

        report.batch_size = limit or calculate_batch_size(report.queue_depth, self.max_batch_size)
        entries = await self.claim_batch(report.batch_size)
        report.claimed = len(entries)
        if not entries:
            return report

        logger.info(
            "%s claimed %d of %d pending entries", self.worker_id, len(entries), report.queue_depth
        )
        thresholds = await self.current_thresholds()

        results = await asyncio.gather(*(self.process_entry(e, thresholds) for e in entries))
        for result in results:
            report.results.append(result)
            if result.status == QueueStatus.COMPLETED.value:
                report.completed += 1
                if result.is_anomaly:
                    report.anomalies += 1
                if result.notification_id:
                    report.notifications += 1
            elif result.status == QueueStatus.FAILED.value:
                report.failed += 1

        report.classification_latency_ms = round(sum(r.latency_ms or 0.0 for r in results), 3)
        report.total_processing_ms = round((time.perf_counter() - started) * 1000, 3)

        logger.info(
            "Batch done: %d completed, %d failed, %d anomalies",
            report.completed, report.failed, report.anomalies,
        )
        await self.record_report(report)
        return report

    async def record_report(self, report: DispatchReport) -> None:
        if self.analytics is None:
            return
        try:
            await self.analytics.record(report)
        except Exception:
            # entries are already terminal at this point
            logger.exception("Could not store analytics for batch %s", report.batch_id)

    async def process_entry(self, entry: QueueEntry, thresholds: DetectionThresholds) -> EntryResult:
        result = EntryResult(
            entry_id=entry.id,
            transaction_id=entry.transaction_id,
            status=QueueStatus.PROCESSING.value,
        )
        try:
            transaction = await self.transactions.get(entry.transaction_id)
            if transaction is None:
                raise TransactionNotFoundError(entry.transaction_id)
            if transaction.user_id != entry.user_id:
                raise InvalidTransactionError(
                    f"Transaction {transaction.id} belongs to {transaction.user_id}, "
                    f"queue entry says {entry.user_id}"
                )

            history = await self.transactions.spending_history(
                transaction.user_id,
                exclude_transaction_id=transaction.id,
                lookback=self.history_lookback,
            )

            started = time.perf_counter()
            anomaly = classify_transaction(transaction, history, thresholds)
            latency_ms = round((time.perf_counter() - started) * 1000, 3)

            result.is_anomaly = anomaly.is_anomaly
            result.latency_ms = latency_ms
            if anomaly.is_anomaly:
                result.alert_type = anomaly.alert_type.value
                result.risk_level = anomaly.risk_level.value
                notification = await self.notifier.notify(transaction, anomaly, latency_ms=latency_ms)
                result.notification_id = notification.id if notification else None

            if await self.queue.mark_completed(entry.id, self.worker_id, self.clock()):
                result.status = QueueStatus.COMPLETED.value
            else:
                logger.warning(
                    "Lease on entry %s lost before completion; outcome left to the new holder", entry.id
                )
                result.status = LEASE_LOST

        except Exception as e:
            logger.exception("Error processing queue entry %s (transaction %s)", entry.id, entry.transaction_id)
            message = str(e) or type(e).__name__
            result.error = message
            try:
                marked = await self.queue.mark_failed(entry.id, self.worker_id, message, self.clock())
            except Exception:
                logger.exception("Could not record failure for queue entry %s", entry.id)
                result.status = UNRECORDED
            else:
                result.status = QueueStatus.FAILED.value if marked else LEASE_LOST

        return result


class AlertScheduler:
    """
    Runs the dispatcher on a fixed interval. The ingestion path can call
    trigger() to run the next tick immediately instead of waiting.
    """

    def __init__(self, dispatcher: AlertDispatcher, poll_interval: float = 5.0):
        # 🛡️ Safety guard
        if not isinstance(poll_interval, (int, float)) or poll_interval <= 0:
            poll_interval = 5.0
        self.dispatcher = dispatcher
        self.poll_interval = poll_interval
        self._wake = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self) -> None:
        self._wake.set()

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.info("🚀 Alert scheduler started (%s, every %ss)", self.dispatcher.worker_id, self.poll_interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("🛑 Alert scheduler stopped")

    async def _loop(self):
        while True:
            try:
                await self.dispatcher.run_once()
            except Exception:
                # a broken tick (e.g. database down) must not kill the scheduler
                logger.exception("Error in alert dispatcher tick")

            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()
