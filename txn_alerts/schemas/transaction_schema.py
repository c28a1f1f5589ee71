# txn_alerts/schemas/transaction_schema.py
from datetime import datetime, timezone
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

from txn_alerts.db.models.transaction_model import TransactionModel


class TransactionCreate(BaseModel):
    user_id: str = Field(min_length=1)
    merchant: str = Field(min_length=1)
    amount: float                       # negative = debit
    category: Optional[str] = None
    transaction_date: Optional[datetime] = None

    @field_validator("transaction_date")
    @classmethod
    def to_naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value


class TransactionIngested(BaseModel):
    transaction: TransactionModel
    queue_entry_id: str
    status: str


class TransactionListResponse(BaseModel):
    transactions: List[TransactionModel]
    count: int
