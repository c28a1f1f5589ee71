# txn_alerts/schemas/anomaly_schema.py
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from pydantic import BaseModel, Field, model_validator


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AlertType(str, Enum):
    UNUSUAL_AMOUNT = "unusual_amount"
    DUPLICATE_CHARGE = "duplicate_charge"
    SUSPICIOUS_MERCHANT = "suspicious_merchant"
    CATEGORY_OVERSPEND = "category_overspend"


# --------------------------------------------------
# EVIDENCE (one shape per alert type)
# --------------------------------------------------
class UnusualAmountEvidence(BaseModel):
    alert_type: Literal["unusual_amount"] = "unusual_amount"
    amount_ratio: float          # |amount| / baseline
    baseline: float              # average spend the ratio was taken against


class DuplicateChargeEvidence(BaseModel):
    alert_type: Literal["duplicate_charge"] = "duplicate_charge"
    duplicate_transaction_id: Optional[str] = None
    hours_apart: float


class SuspiciousMerchantEvidence(BaseModel):
    alert_type: Literal["suspicious_merchant"] = "suspicious_merchant"
    matched_token: str


class CategoryOverspendEvidence(BaseModel):
    alert_type: Literal["category_overspend"] = "category_overspend"
    category_average: float
    amount_ratio: float


AnomalyEvidence = Annotated[
    Union[
        UnusualAmountEvidence,
        DuplicateChargeEvidence,
        SuspiciousMerchantEvidence,
        CategoryOverspendEvidence,
    ],
    Field(discriminator="alert_type"),
]


class AnomalyResult(BaseModel):
    """Classifier output. A non-anomalous result carries no alert type, reason or evidence."""

    is_anomaly: bool
    risk_level: RiskLevel = RiskLevel.LOW
    alert_type: Optional[AlertType] = None
    confidence: float = Field(ge=0.0, le=1.0)
    reason: Optional[str] = None
    evidence: Optional[AnomalyEvidence] = None

    @model_validator(mode="after")
    def check_shape(self):
        if not self.is_anomaly:
            if self.alert_type is not None or self.reason is not None or self.evidence is not None:
                raise ValueError("non-anomalous result must not carry alert_type, reason or evidence")
        else:
            if self.alert_type is None:
                raise ValueError("anomalous result requires alert_type")
            if self.evidence is not None and self.evidence.alert_type != self.alert_type.value:
                raise ValueError("evidence does not match alert_type")
        return self

    class Config:
        frozen = True
