# txn_alerts/db/models/detection_settings_model.py
"""
Detection settings for the transaction alert classifier.

Stored as the `transaction_alerts` block of the single `system_settings`
document so thresholds can be tuned without redeploying the worker.
"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator


DEFAULT_SUSPICIOUS_MERCHANT_TOKENS = ("unknown", "suspicious", "test", "foreign", "crypto")


class DetectionThresholds(BaseModel):
    """Named classifier thresholds"""

    unusual_amount_multiplier: float = Field(gt=0, default=3.0)
    high_risk_amount_multiplier: float = Field(gt=0, default=5.0)
    duplicate_window_hours: float = Field(ge=0, default=24.0)
    suspicious_merchant_tokens: List[str] = Field(
        default_factory=lambda: list(DEFAULT_SUSPICIOUS_MERCHANT_TOKENS)
    )
    category_overspend_multiplier: float = Field(gt=0, default=2.5)
    default_average_spend: float = Field(gt=0, default=100.0)

    @field_validator("suspicious_merchant_tokens")
    @classmethod
    def normalize_tokens(cls, tokens: List[str]) -> List[str]:
        cleaned = [t.strip().lower() for t in tokens if t and t.strip()]
        # keep first occurrence order, drop repeats
        return list(dict.fromkeys(cleaned))

    @model_validator(mode="after")
    def check_multipliers(self):
        if self.high_risk_amount_multiplier < self.unusual_amount_multiplier:
            raise ValueError(
                "high_risk_amount_multiplier must be >= unusual_amount_multiplier"
            )
        return self

    class Config:
        json_schema_extra = {
            "example": {
                "unusual_amount_multiplier": 3.0,
                "high_risk_amount_multiplier": 5.0,
                "duplicate_window_hours": 24,
                "suspicious_merchant_tokens": list(DEFAULT_SUSPICIOUS_MERCHANT_TOKENS),
                "category_overspend_multiplier": 2.5,
                "default_average_spend": 100.0,
            }
        }


class DetectionSettingsDocument(BaseModel):
    """Shape of the `transaction_alerts` block inside `system_settings`"""

    thresholds: DetectionThresholds = Field(default_factory=DetectionThresholds)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    updated_by: Optional[str] = None
