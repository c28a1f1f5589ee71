"""
Tests for the rule-based transaction classifier
"""
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from txn_alerts.core.transaction_rule_based import classify_transaction
from txn_alerts.db.models.detection_settings_model import DetectionThresholds
from txn_alerts.db.models.transaction_model import (
    SpendingHistory,
    TransactionModel,
    build_spending_history,
)
from txn_alerts.schemas.anomaly_schema import AlertType, AnomalyResult, RiskLevel


NOW = datetime(2024, 1, 2, 14, 0, 0)


def txn(id="t-current", amount=-10.0, merchant="Grocer", category=None, when=NOW, user_id="user-1"):
    return TransactionModel(
        id=id,
        user_id=user_id,
        merchant=merchant,
        amount=amount,
        category=category,
        transaction_date=when,
    )


# --------------------------------------------------
# Unusual amount
# --------------------------------------------------
def test_four_times_average_is_medium_risk():
    res = classify_transaction(txn(amount=-200), SpendingHistory(average_spend=50))

    assert res.is_anomaly is True
    assert res.alert_type == AlertType.UNUSUAL_AMOUNT
    assert res.risk_level == RiskLevel.MEDIUM
    assert res.evidence.amount_ratio == pytest.approx(4.0)


def test_six_times_average_is_high_risk():
    res = classify_transaction(txn(amount=-300), SpendingHistory(average_spend=50))

    assert res.is_anomaly is True
    assert res.alert_type == AlertType.UNUSUAL_AMOUNT
    assert res.risk_level == RiskLevel.HIGH


def test_twice_average_is_not_anomalous():
    res = classify_transaction(txn(amount=-100), SpendingHistory(average_spend=50))

    assert res.is_anomaly is False
    assert res.alert_type is None
    assert res.reason is None
    assert res.evidence is None


def test_exactly_at_threshold_is_not_unusual_amount():
    # 3x is the boundary; the rule needs strictly more
    res = classify_transaction(txn(amount=-150), SpendingHistory(average_spend=50))
    assert res.alert_type != AlertType.UNUSUAL_AMOUNT


def test_confidence_grows_with_ratio_and_is_capped():
    history = SpendingHistory(average_spend=50)
    four_x = classify_transaction(txn(amount=-200), history)
    six_x = classify_transaction(txn(amount=-300), history)
    hundred_x = classify_transaction(txn(amount=-5000), history)

    assert four_x.confidence < six_x.confidence <= hundred_x.confidence
    assert hundred_x.confidence <= 0.95


def test_credits_are_compared_by_magnitude():
    res = classify_transaction(txn(amount=400), SpendingHistory(average_spend=50))
    assert res.alert_type == AlertType.UNUSUAL_AMOUNT


def test_missing_average_falls_back_to_default():
    # default average spend is 100, so 350 is 3.5x
    res = classify_transaction(txn(amount=-350), SpendingHistory())
    assert res.alert_type == AlertType.UNUSUAL_AMOUNT
    assert res.evidence.baseline == 100.0


def test_missing_history_is_tolerated():
    res = classify_transaction(txn(amount=-20), None)
    assert res.is_anomaly is False


# --------------------------------------------------
# Duplicate charge
# --------------------------------------------------
def _coffee(id, when):
    return txn(id=id, amount=-5.99, merchant="Coffee Shop", when=when)


def test_same_merchant_and_amount_two_hours_apart_is_duplicate():
    first = _coffee("t-1", NOW - timedelta(hours=2))
    second = _coffee("t-2", NOW)

    res = classify_transaction(second, build_spending_history([first]))

    assert res.is_anomaly is True
    assert res.alert_type == AlertType.DUPLICATE_CHARGE
    assert res.risk_level == RiskLevel.MEDIUM
    assert res.evidence.duplicate_transaction_id == "t-1"
    assert res.evidence.hours_apart == pytest.approx(2.0)


def test_same_pair_48_hours_apart_is_not_duplicate():
    first = _coffee("t-1", NOW - timedelta(hours=48))
    second = _coffee("t-2", NOW)

    res = classify_transaction(second, build_spending_history([first]))
    assert res.is_anomaly is False


def test_duplicate_window_boundary_is_inclusive():
    first = _coffee("t-1", NOW - timedelta(hours=24))
    second = _coffee("t-2", NOW)

    res = classify_transaction(second, build_spending_history([first]))
    assert res.alert_type == AlertType.DUPLICATE_CHARGE


def test_transaction_is_not_a_duplicate_of_itself():
    current = _coffee("t-1", NOW)
    res = classify_transaction(current, build_spending_history([current]))
    assert res.is_anomaly is False


def test_duplicate_compares_amounts_to_the_cent():
    first = txn(id="t-1", amount=-5.98, merchant="Coffee Shop", when=NOW - timedelta(hours=1))
    second = _coffee("t-2", NOW)

    res = classify_transaction(second, build_spending_history([first]))
    assert res.is_anomaly is False


def test_duplicate_handles_mixed_timezones():
    first = _coffee("t-1", datetime(2024, 1, 2, 13, 0, tzinfo=timezone.utc))
    second = _coffee("t-2", NOW)

    res = classify_transaction(second, build_spending_history([first]))
    assert res.alert_type == AlertType.DUPLICATE_CHARGE


def test_history_entries_without_date_are_skipped():
    first = _coffee("t-1", None)
    second = _coffee("t-2", NOW)

    res = classify_transaction(second, build_spending_history([first]))
    assert res.is_anomaly is False


# --------------------------------------------------
# Suspicious merchant
# --------------------------------------------------
def test_suspicious_merchant_regardless_of_amount():
    res = classify_transaction(txn(amount=-100, merchant="CryptoExchange XYZ"), SpendingHistory())

    assert res.is_anomaly is True
    assert res.alert_type == AlertType.SUSPICIOUS_MERCHANT
    assert res.risk_level == RiskLevel.HIGH
    assert res.evidence.matched_token == "crypto"


# --------------------------------------------------
# Category overspend
# --------------------------------------------------
def test_category_overspend_is_low_risk():
    history = SpendingHistory(categories={"Dining": 30})
    res = classify_transaction(txn(amount=-100, category="Dining"), history)

    assert res.is_anomaly is True
    assert res.alert_type == AlertType.CATEGORY_OVERSPEND
    assert res.risk_level == RiskLevel.LOW
    assert res.evidence.amount_ratio == pytest.approx(100 / 30)


def test_unseen_category_uses_overall_average():
    history = SpendingHistory(average_spend=100, categories={"Dining": 30})
    res = classify_transaction(txn(amount=-260, category="Travel"), history)

    assert res.alert_type == AlertType.CATEGORY_OVERSPEND
    assert res.evidence.category_average == 100


# --------------------------------------------------
# Precedence and thresholds
# --------------------------------------------------
def test_unusual_amount_takes_precedence_over_suspicious_merchant():
    res = classify_transaction(
        txn(amount=-1000, merchant="Unknown Vendor"), SpendingHistory(average_spend=50)
    )
    assert res.alert_type == AlertType.UNUSUAL_AMOUNT


def test_duplicate_takes_precedence_over_suspicious_merchant():
    first = txn(id="t-1", amount=-20, merchant="Crypto ATM", when=NOW - timedelta(hours=1))
    second = txn(id="t-2", amount=-20, merchant="Crypto ATM", when=NOW)

    res = classify_transaction(second, build_spending_history([first]))
    assert res.alert_type == AlertType.DUPLICATE_CHARGE


def test_custom_thresholds_are_applied():
    thresholds = DetectionThresholds(
        unusual_amount_multiplier=10,
        high_risk_amount_multiplier=20,
        category_overspend_multiplier=10,
        suspicious_merchant_tokens=["casino"],
    )
    history = SpendingHistory(average_spend=50)

    assert classify_transaction(txn(amount=-300), history, thresholds).is_anomaly is False
    res = classify_transaction(txn(merchant="Lucky Casino"), history, thresholds)
    assert res.alert_type == AlertType.SUSPICIOUS_MERCHANT
    assert res.evidence.matched_token == "casino"


def test_classifier_is_deterministic():
    history = SpendingHistory(average_spend=50)
    current = txn(amount=-200)
    assert classify_transaction(current, history) == classify_transaction(current, history)


# --------------------------------------------------
# Result and threshold validation
# --------------------------------------------------
def test_non_anomalous_result_rejects_alert_type():
    with pytest.raises(ValidationError):
        AnomalyResult(is_anomaly=False, alert_type=AlertType.UNUSUAL_AMOUNT, confidence=0.5)


def test_anomalous_result_requires_alert_type():
    with pytest.raises(ValidationError):
        AnomalyResult(is_anomaly=True, risk_level=RiskLevel.HIGH, confidence=0.9)


def test_high_risk_multiplier_must_not_be_below_unusual():
    with pytest.raises(ValidationError):
        DetectionThresholds(unusual_amount_multiplier=5, high_risk_amount_multiplier=3)


def test_spending_history_averages_debits_only():
    history = build_spending_history([
        txn(id="a", amount=-40, category="Dining"),
        txn(id="b", amount=-20, category="Dining"),
        txn(id="c", amount=500),
    ])
    assert history.average_spend == pytest.approx(30)
    assert history.categories == {"Dining": pytest.approx(30)}
    assert len(history.recent_transactions) == 3
