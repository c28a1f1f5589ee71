"""
PushNotificationEntry model for the `notification_queue` collection.

One pending push per wallet notification, picked up by the mobile/web push
sender. The pipeline only writes rows; delivery happens elsewhere.
"""

from datetime import datetime
from typing import Any, Dict, Literal
from pydantic import BaseModel, Field

from txn_alerts.db.models.transaction_model import new_id


TRANSACTION_ANOMALY = "transaction_anomaly"


class PushContent(BaseModel):
    title: str
    body: str
    data: Dict[str, Any] = Field(default_factory=dict)


class PushNotificationEntry(BaseModel):
    id: str = Field(default_factory=new_id)
    notification_id: str
    user_id: str
    notification_type: Literal["transaction_anomaly"] = TRANSACTION_ANOMALY
    subject: str
    content: PushContent
    status: str = "pending"
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        json_schema_extra = {
            "example": {
                "notification_id": "65a1f0c2e4b0a1b2c3d4e5f8",
                "user_id": "user-42",
                "notification_type": "transaction_anomaly",
                "subject": "⚠️ Crypto ATM",
                "content": {
                    "title": "⚠️ Suspicious Merchant",
                    "body": "Transaction at potentially suspicious merchant: Crypto ATM",
                    "data": {"type": "transaction_anomaly", "transaction_id": "65a1f0c2e4b0a1b2c3d4e5f7"},
                },
                "status": "pending",
            }
        }
