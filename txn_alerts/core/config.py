from typing import List
from pydantic_settings import BaseSettings

from txn_alerts.db.models.detection_settings_model import (
    DEFAULT_SUSPICIOUS_MERCHANT_TOKENS,
    DetectionThresholds,
)


class Settings(BaseSettings):
    PROJECT_NAME: str = "Transaction Alert Pipeline"
    LOG_LEVEL: str = "INFO"

    # Storage: "mongo" for production, "memory" for local runs and tests
    STORAGE_BACKEND: str = "mongo"

    # MongoDB Config
    MONGO_URI: str = "mongodb://localhost:27017"
    MONGO_DB_NAME: str = "wallet"

    # Redis (cross-instance realtime fan-out)
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_ENABLED: bool = True

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Dispatcher / queue
    SCHEDULER_ENABLED: bool = True
    DISPATCH_INTERVAL_SECONDS: float = 5.0
    LEASE_SECONDS: int = 120
    MAX_BATCH_SIZE: int = 20
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY_SECONDS: int = 30
    RETRY_MAX_DELAY_SECONDS: int = 600
    HISTORY_LOOKBACK: int = 50

    # Realtime
    REALTIME_SUBSCRIBER_BUFFER: int = 100

    # Classifier thresholds (defaults, overridable at runtime via system_settings)
    UNUSUAL_AMOUNT_MULTIPLIER: float = 3.0
    HIGH_RISK_AMOUNT_MULTIPLIER: float = 5.0
    DUPLICATE_WINDOW_HOURS: float = 24.0
    SUSPICIOUS_MERCHANT_TOKENS: List[str] = list(DEFAULT_SUSPICIOUS_MERCHANT_TOKENS)
    CATEGORY_OVERSPEND_MULTIPLIER: float = 2.5
    DEFAULT_AVERAGE_SPEND: float = 100.0

    class Config:
        env_file = ".env"
        extra = "ignore"

    def detection_thresholds(self) -> DetectionThresholds:
        return DetectionThresholds(
            unusual_amount_multiplier=self.UNUSUAL_AMOUNT_MULTIPLIER,
            high_risk_amount_multiplier=self.HIGH_RISK_AMOUNT_MULTIPLIER,
            duplicate_window_hours=self.DUPLICATE_WINDOW_HOURS,
            suspicious_merchant_tokens=self.SUSPICIOUS_MERCHANT_TOKENS,
            category_overspend_multiplier=self.CATEGORY_OVERSPEND_MULTIPLIER,
            default_average_spend=self.DEFAULT_AVERAGE_SPEND,
        )


settings = Settings()
