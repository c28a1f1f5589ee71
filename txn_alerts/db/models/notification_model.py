# txn_alerts/db/models/notification_model.py
"""
Notification model for the `wallet_notifications` collection.

Created once per anomalous transaction by the notifier. Metadata is a closed
union keyed by `alert_type`, so every alert kind has a known payload shape.
"""

from datetime import datetime
from typing import Annotated, Literal, Optional, Union
from pydantic import BaseModel, Field, TypeAdapter

from txn_alerts.db.models.transaction_model import new_id
from txn_alerts.schemas.anomaly_schema import RiskLevel


TRANSACTION_ALERT = "transaction_alert"


class AlertMetadataBase(BaseModel):
    transaction_id: str
    merchant: str
    amount: float
    category: Optional[str] = None
    risk_level: RiskLevel
    confidence: float
    latency_ms: Optional[float] = None
    model: Optional[str] = None   # set only when an external scorer produced the result

    class Config:
        use_enum_values = True


class UnusualAmountMetadata(AlertMetadataBase):
    alert_type: Literal["unusual_amount"] = "unusual_amount"
    amount_ratio: float
    baseline: float


class DuplicateChargeMetadata(AlertMetadataBase):
    alert_type: Literal["duplicate_charge"] = "duplicate_charge"
    duplicate_transaction_id: Optional[str] = None
    hours_apart: float


class SuspiciousMerchantMetadata(AlertMetadataBase):
    alert_type: Literal["suspicious_merchant"] = "suspicious_merchant"
    matched_token: str


class CategoryOverspendMetadata(AlertMetadataBase):
    alert_type: Literal["category_overspend"] = "category_overspend"
    category_average: float
    amount_ratio: float


NotificationMetadata = Annotated[
    Union[
        UnusualAmountMetadata,
        DuplicateChargeMetadata,
        SuspiciousMerchantMetadata,
        CategoryOverspendMetadata,
    ],
    Field(discriminator="alert_type"),
]

metadata_adapter = TypeAdapter(NotificationMetadata)


class Notification(BaseModel):
    """User-visible record of a detected anomaly"""

    id: str = Field(default_factory=new_id)
    user_id: str
    notification_type: Literal["transaction_alert"] = TRANSACTION_ALERT
    title: str
    message: str
    priority: RiskLevel
    read: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
    metadata: NotificationMetadata

    class Config:
        use_enum_values = True
