# txn_alerts/core/transaction_rule_based.py
"""
Rule-based transaction anomaly classifier.

classify_transaction(transaction, history, thresholds) -> AnomalyResult

Rules are evaluated in a fixed order and the first one that fires wins:
    1. unusual_amount       (|amount| far above the user's average spend)
    2. duplicate_charge     (same merchant + amount within the duplicate window)
    3. suspicious_merchant  (merchant name contains a denylisted token)
    4. category_overspend   (|amount| far above the category average)

The function is pure: no I/O, no shared state. Missing optional inputs fall
back to defaults instead of raising.
"""

from datetime import datetime, timezone
from typing import Optional

from txn_alerts.db.models.detection_settings_model import DetectionThresholds
from txn_alerts.db.models.transaction_model import SpendingHistory, TransactionModel
from txn_alerts.schemas.anomaly_schema import (
    AlertType,
    AnomalyResult,
    CategoryOverspendEvidence,
    DuplicateChargeEvidence,
    RiskLevel,
    SuspiciousMerchantEvidence,
    UnusualAmountEvidence,
)


# ----------------------------------------------------
# RULE CONFIDENCES
# ----------------------------------------------------
UNUSUAL_AMOUNT_BASE_CONFIDENCE = 0.7
UNUSUAL_AMOUNT_CONFIDENCE_STEP = 0.05
UNUSUAL_AMOUNT_MAX_CONFIDENCE = 0.95
DUPLICATE_CHARGE_CONFIDENCE = 0.9
SUSPICIOUS_MERCHANT_CONFIDENCE = 0.85
CATEGORY_OVERSPEND_CONFIDENCE = 0.7
NO_ANOMALY_CONFIDENCE = 0.1

DEFAULT_THRESHOLDS = DetectionThresholds()


def _to_utc(value: datetime) -> datetime:
    """Naive datetimes are taken as UTC; aware ones are converted."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _cents(amount: float) -> int:
    return int(round(abs(amount) * 100))


def _baseline(history: SpendingHistory, thresholds: DetectionThresholds) -> float:
    return history.average_spend or thresholds.default_average_spend


# ----------------------------------------------------
# RULE 1: UNUSUAL AMOUNT
# ----------------------------------------------------
def check_unusual_amount(
    transaction: TransactionModel, history: SpendingHistory, thresholds: DetectionThresholds
) -> Optional[AnomalyResult]:
    amount = abs(transaction.amount)
    avg = _baseline(history, thresholds)

    if amount <= avg * thresholds.unusual_amount_multiplier:
        return None

    ratio = amount / avg
    risk = (
        RiskLevel.HIGH
        if amount > avg * thresholds.high_risk_amount_multiplier
        else RiskLevel.MEDIUM
    )
    confidence = min(
        UNUSUAL_AMOUNT_MAX_CONFIDENCE,
        UNUSUAL_AMOUNT_BASE_CONFIDENCE + ratio * UNUSUAL_AMOUNT_CONFIDENCE_STEP,
    )
    return AnomalyResult(
        is_anomaly=True,
        risk_level=risk,
        alert_type=AlertType.UNUSUAL_AMOUNT,
        confidence=confidence,
        reason=f"Transaction amount ${amount:.2f} is {ratio:.1f}x your average spend",
        evidence=UnusualAmountEvidence(amount_ratio=ratio, baseline=avg),
    )


# ----------------------------------------------------
# RULE 2: DUPLICATE CHARGE
# ----------------------------------------------------
def check_duplicate_charge(
    transaction: TransactionModel, history: SpendingHistory, thresholds: DetectionThresholds
) -> Optional[AnomalyResult]:
    if transaction.transaction_date is None:
        return None

    current_time = _to_utc(transaction.transaction_date)
    window_seconds = thresholds.duplicate_window_hours * 3600
    amount_cents = _cents(transaction.amount)

    for previous in history.recent_transactions:
        if previous.id == transaction.id:
            continue
        if previous.merchant != transaction.merchant:
            continue
        if _cents(previous.amount) != amount_cents:
            continue
        if previous.transaction_date is None:
            continue

        seconds_apart = abs((current_time - _to_utc(previous.transaction_date)).total_seconds())
        if seconds_apart <= window_seconds:
            return AnomalyResult(
                is_anomaly=True,
                risk_level=RiskLevel.MEDIUM,
                alert_type=AlertType.DUPLICATE_CHARGE,
                confidence=DUPLICATE_CHARGE_CONFIDENCE,
                reason=f"Potential duplicate charge at {transaction.merchant}",
                evidence=DuplicateChargeEvidence(
                    duplicate_transaction_id=previous.id,
                    hours_apart=round(seconds_apart / 3600, 2),
                ),
            )

    return None


# ----------------------------------------------------
# RULE 3: SUSPICIOUS MERCHANT
# ----------------------------------------------------
def check_suspicious_merchant(
    transaction: TransactionModel, history: SpendingHistory, thresholds: DetectionThresholds
) -> Optional[AnomalyResult]:
    merchant = (transaction.merchant or "").lower()
    matched = next((t for t in thresholds.suspicious_merchant_tokens if t in merchant), None)
    if matched is None:
        return None

    return AnomalyResult(
        is_anomaly=True,
        risk_level=RiskLevel.HIGH,
        alert_type=AlertType.SUSPICIOUS_MERCHANT,
        confidence=SUSPICIOUS_MERCHANT_CONFIDENCE,
        reason=f"Transaction at potentially suspicious merchant: {transaction.merchant}",
        evidence=SuspiciousMerchantEvidence(matched_token=matched),
    )


# ----------------------------------------------------
# RULE 4: CATEGORY OVERSPEND
# ----------------------------------------------------
def check_category_overspend(
    transaction: TransactionModel, history: SpendingHistory, thresholds: DetectionThresholds
) -> Optional[AnomalyResult]:
    amount = abs(transaction.amount)
    # Categories the history has not seen yet fall back to the overall average
    category_avg = history.categories.get(transaction.category or "") or _baseline(history, thresholds)

    if amount <= category_avg * thresholds.category_overspend_multiplier:
        return None

    return AnomalyResult(
        is_anomaly=True,
        risk_level=RiskLevel.LOW,
        alert_type=AlertType.CATEGORY_OVERSPEND,
        confidence=CATEGORY_OVERSPEND_CONFIDENCE,
        reason=f"{transaction.category or 'Uncategorized'} spending unusually high",
        evidence=CategoryOverspendEvidence(
            category_average=category_avg,
            amount_ratio=amount / category_avg,
        ),
    )


RULES = (
    check_unusual_amount,
    check_duplicate_charge,
    check_suspicious_merchant,
    check_category_overspend,
)

NO_ANOMALY = AnomalyResult(
    is_anomaly=False,
    risk_level=RiskLevel.LOW,
    alert_type=None,
    confidence=NO_ANOMALY_CONFIDENCE,
    reason=None,
)


def classify_transaction(
    transaction: TransactionModel,
    history: Optional[SpendingHistory] = None,
    thresholds: Optional[DetectionThresholds] = None,
) -> AnomalyResult:
    """
    Score one transaction against the user's spending history.

    Returns the result of the first rule that fires, or a non-anomalous
    result when none does. Never raises for business reasons.
    """
    history = history or SpendingHistory()
    thresholds = thresholds or DEFAULT_THRESHOLDS

    for rule in RULES:
        result = rule(transaction, history, thresholds)
        if result is not None:
            return result

    return NO_ANOMALY
