import logging
from datetime import datetime
from typing import Optional, Dict, Iterable, List
from bson import ObjectId
from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


def new_id() -> str:
    return str(ObjectId())


class TransactionModel(BaseModel):
    """
    Immutable fact about a single charge, stored in the `transactions` collection.

    Written once by ingestion; the alert pipeline only ever reads it.
    Negative amounts are debits.
    """

    id: str
    user_id: str
    merchant: str = ""
    amount: float
    category: Optional[str] = None
    transaction_date: Optional[datetime] = None

    @field_validator("id", "user_id")
    @classmethod
    def not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be blank")
        return value

    class Config:
        from_attributes = True
        frozen = True


class SpendingHistory(BaseModel):
    """
    Read-only snapshot of a user's spending, used as classification context.

    average_spend is None when the user has no debits yet; the classifier
    applies its own fallback.
    """

    average_spend: Optional[float] = None
    categories: Dict[str, float] = Field(default_factory=dict)
    recent_transactions: List[TransactionModel] = Field(default_factory=list)


def build_spending_history(transactions: List[TransactionModel]) -> SpendingHistory:
    """Aggregate recent transactions (newest first) into a SpendingHistory."""
    debits = [t for t in transactions if t.amount < 0]

    average_spend = None
    if debits:
        average_spend = sum(abs(t.amount) for t in debits) / len(debits)

    per_category: Dict[str, List[float]] = {}
    for t in debits:
        if t.category:
            per_category.setdefault(t.category, []).append(abs(t.amount))

    return SpendingHistory(
        average_spend=average_spend,
        categories={cat: sum(vals) / len(vals) for cat, vals in per_category.items()},
        recent_transactions=list(transactions),
    )


def parse_transactions(records: Iterable[dict]) -> List[TransactionModel]:
    """
    Validate stored transaction records one at a time.
    A malformed row is logged and skipped so it cannot poison the history
    of every later transaction of the same user.
    """
    parsed = []
    for record in records:
        try:
            parsed.append(TransactionModel.model_validate(record))
        except ValidationError as e:
            logger.warning(
                "Skipping malformed transaction %s for user %s (%d validation errors)",
                record.get("id"), record.get("user_id"), e.error_count(),
            )
    return parsed
