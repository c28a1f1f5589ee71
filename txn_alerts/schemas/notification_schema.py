# txn_alerts/schemas/notification_schema.py
from typing import Dict, List, Optional
from pydantic import BaseModel

from txn_alerts.db.models.notification_model import Notification
from txn_alerts.db.models.queue_entry_model import QueueEntry


class NotificationListResponse(BaseModel):
    notifications: List[Notification]
    count: int
    unread_count: int


class UnreadCountResponse(BaseModel):
    user_id: str
    unread_count: int


class QueueStatsResponse(BaseModel):
    counts: Dict[str, int]
    total: int
    scheduler_running: bool
    realtime_subscribers: int


class QueueEntryListResponse(BaseModel):
    entries: List[QueueEntry]
    count: int


class SuccessResponse(BaseModel):
    success: bool = True
    message: str
    affected: Optional[int] = None
