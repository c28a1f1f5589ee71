# txn_alerts/db/models/queue_entry_model.py
"""
QueueEntry model for the `transaction_alert_queue` collection.

One entry per ingested transaction. Status moves
pending -> processing -> completed | failed; failed entries are put back to
pending by the retry policy and expired leases are reclaimed to pending.
"""

from datetime import datetime
from typing import Optional
from enum import Enum
from pydantic import BaseModel, Field

from txn_alerts.db.models.transaction_model import new_id


class QueueStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class QueueEntry(BaseModel):
    """Unit of pending classification work tied to one transaction"""

    id: str = Field(default_factory=new_id)
    transaction_id: str
    user_id: str
    status: QueueStatus = QueueStatus.PENDING
    created_at: datetime = Field(default_factory=datetime.utcnow)
    processed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    # Lease / retry bookkeeping
    attempts: int = 0
    claimed_by: Optional[str] = None
    claimed_at: Optional[datetime] = None
    lease_expires_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None

    class Config:
        use_enum_values = True
        validate_default = True
        json_schema_extra = {
            "example": {
                "id": "65a1f0c2e4b0a1b2c3d4e5f6",
                "transaction_id": "65a1f0c2e4b0a1b2c3d4e5f7",
                "user_id": "user-42",
                "status": "pending",
                "created_at": "2024-01-01T12:00:00Z",
                "processed_at": None,
                "error_message": None,
                "attempts": 0,
            }
        }
