# txn_alerts/api/v1/routes/alert_queue_route.py
"""
Operational endpoints for the transaction alert queue:
manual dispatch, queue inspection, retry/reclaim, batch analytics,
push queue inspection and threshold tuning.
"""

from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException

from txn_alerts.db.models.detection_settings_model import DetectionThresholds
from txn_alerts.db.models.push_queue_model import PushNotificationEntry
from txn_alerts.db.models.queue_entry_model import QueueStatus
from txn_alerts.schemas.notification_schema import (
    QueueEntryListResponse,
    QueueStatsResponse,
    SuccessResponse,
)
from txn_alerts.schemas.dispatch_schema import DispatchReport
from txn_alerts.services.pipeline import AlertPipeline, get_pipeline

router = APIRouter(prefix="/alerts", tags=["Transaction Alerts"])


@router.post("/process", response_model=DispatchReport)
async def process_alerts(
    limit: Optional[int] = None,
    pipeline: AlertPipeline = Depends(get_pipeline),
):
    """Run one dispatcher pass now (same code path as the scheduled tick)."""
    if limit is not None and limit <= 0:
        raise HTTPException(status_code=400, detail="limit must be positive")
    return await pipeline.dispatcher.run_once(limit=limit)


@router.get("/queue/stats", response_model=QueueStatsResponse)
async def get_queue_stats(pipeline: AlertPipeline = Depends(get_pipeline)):
    counts = await pipeline.queue.count_by_status()
    return {
        "counts": counts,
        "total": sum(counts.values()),
        "scheduler_running": pipeline.scheduler.is_running,
        "realtime_subscribers": pipeline.broker.subscriber_count(),
    }


@router.get("/queue", response_model=QueueEntryListResponse)
async def list_queue_entries(
    status: Optional[QueueStatus] = None,
    limit: int = 100,
    pipeline: AlertPipeline = Depends(get_pipeline),
):
    entries = await pipeline.queue.list_entries(status.value if status else None, limit=limit)
    return {"entries": entries, "count": len(entries)}


@router.post("/queue/retry-failed", response_model=SuccessResponse)
async def retry_failed_entries(pipeline: AlertPipeline = Depends(get_pipeline)):
    dispatcher = pipeline.dispatcher
    requeued = await pipeline.queue.requeue_failed(
        dispatcher.retry_max_attempts,
        dispatcher.retry_base_delay_seconds,
        dispatcher.retry_max_delay_seconds,
        dispatcher.clock(),
    )
    return {"message": f"Requeued {requeued} failed entries", "affected": requeued}


@router.post("/queue/reclaim", response_model=SuccessResponse)
async def reclaim_expired_leases(pipeline: AlertPipeline = Depends(get_pipeline)):
    reclaimed = await pipeline.queue.reclaim_expired(pipeline.dispatcher.clock())
    return {"message": f"Reclaimed {reclaimed} expired leases", "affected": reclaimed}


# --------------------------------------------------
# BATCH ANALYTICS / PUSH QUEUE
# --------------------------------------------------
@router.get("/analytics", response_model=List[DispatchReport])
async def get_batch_analytics(
    limit: int = 20,
    pipeline: AlertPipeline = Depends(get_pipeline),
):
    """Stored dispatcher runs, newest first"""
    return await pipeline.analytics.recent(limit=limit)


@router.get("/push-queue", response_model=List[PushNotificationEntry])
async def list_push_queue(
    user_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 100,
    pipeline: AlertPipeline = Depends(get_pipeline),
):
    return await pipeline.push_queue.list_entries(user_id=user_id, status=status, limit=limit)


# --------------------------------------------------
# THRESHOLDS (runtime-tunable classifier settings)
# --------------------------------------------------
@router.get("/thresholds", response_model=DetectionThresholds)
async def get_thresholds(pipeline: AlertPipeline = Depends(get_pipeline)):
    return await pipeline.dispatcher.current_thresholds()


@router.put("/thresholds", response_model=DetectionThresholds)
async def update_thresholds(
    thresholds: DetectionThresholds,
    updated_by: Optional[str] = None,
    pipeline: AlertPipeline = Depends(get_pipeline),
):
    await pipeline.detection_settings.save_thresholds(thresholds, updated_by=updated_by)
    return thresholds
