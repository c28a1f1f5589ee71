# txn_alerts/schemas/dispatch_schema.py
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field

from txn_alerts.db.models.transaction_model import new_id


class EntryResult(BaseModel):
    entry_id: str
    transaction_id: str
    status: str
    is_anomaly: Optional[bool] = None
    alert_type: Optional[str] = None
    risk_level: Optional[str] = None
    notification_id: Optional[str] = None
    latency_ms: Optional[float] = None
    error: Optional[str] = None


class DispatchReport(BaseModel):
    """
    Summary of one dispatcher run. Runs that claimed work are also stored
    in `batch_processing_analytics`.
    """

    batch_id: str = Field(default_factory=new_id)
    worker_id: str
    started_at: datetime = Field(default_factory=datetime.utcnow)
    queue_depth: int = 0
    batch_size: int = 0
    reclaimed: int = 0
    requeued: int = 0
    claimed: int = 0
    completed: int = 0
    failed: int = 0
    anomalies: int = 0
    notifications: int = 0
    classification_latency_ms: float = 0.0   # summed over the batch
    total_processing_ms: float = 0.0
    results: List[EntryResult] = Field(default_factory=list)
