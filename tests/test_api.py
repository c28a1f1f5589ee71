"""
API tests against the in-memory backend (no Mongo, no Redis, no scheduler)
"""
import pytest
from fastapi.testclient import TestClient

from txn_alerts.main import app


@pytest.fixture
def client():
    # entering the context runs startup, which builds a fresh pipeline
    with TestClient(app) as c:
        yield c


def post_txn(client, user_id="alice", merchant="Grocer", amount=-20.0, **extra):
    payload = {"user_id": user_id, "merchant": merchant, "amount": amount, **extra}
    return client.post("/api/v1/transactions", json=payload)


def test_health(client):
    res = client.get("/")
    assert res.status_code == 200
    assert res.json()["storage"] == "memory"


def test_ingest_enqueues_transaction(client):
    res = post_txn(client, transaction_date="2024-01-01T12:00:00+02:00")

    assert res.status_code == 201
    body = res.json()
    assert body["status"] == "pending"
    assert body["transaction"]["user_id"] == "alice"
    assert body["transaction"]["transaction_date"] == "2024-01-01T10:00:00"

    fetched = client.get(f"/api/v1/transactions/{body['transaction']['id']}")
    assert fetched.status_code == 200

    stats = client.get("/api/v1/alerts/queue/stats").json()
    assert stats["counts"]["pending"] == 1
    assert stats["total"] == 1
    assert stats["scheduler_running"] is False


def test_ingest_rejects_blank_user(client):
    assert post_txn(client, user_id="").status_code == 422


def test_unknown_transaction_is_404(client):
    assert client.get("/api/v1/transactions/nope").status_code == 404


def test_process_creates_notification_for_anomaly(client):
    post_txn(client, merchant="Grocer", amount=-100)
    flagged = post_txn(client, merchant="CryptoExchange XYZ", amount=-100).json()

    report = client.post("/api/v1/alerts/process").json()
    assert report["completed"] == 2
    assert report["anomalies"] == 1

    listing = client.get("/api/v1/notifications", params={"user_id": "alice"}).json()
    assert listing["count"] == 1
    assert listing["unread_count"] == 1
    notification = listing["notifications"][0]
    assert notification["priority"] == "high"
    assert notification["metadata"]["alert_type"] == "suspicious_merchant"
    assert notification["metadata"]["transaction_id"] == flagged["transaction"]["id"]

    other = client.get("/api/v1/notifications", params={"user_id": "bob"}).json()
    assert other["count"] == 0


def test_mark_read(client):
    post_txn(client, merchant="Unknown Vendor")
    client.post("/api/v1/alerts/process")
    notification = client.get("/api/v1/notifications", params={"user_id": "alice"}).json()["notifications"][0]

    url = f"/api/v1/notifications/{notification['id']}/read"
    assert client.patch(url, params={"user_id": "bob"}).status_code == 404
    assert client.patch(url, params={"user_id": "alice"}).status_code == 200

    count = client.get("/api/v1/notifications/unread-count", params={"user_id": "alice"}).json()
    assert count["unread_count"] == 0
    unread = client.get("/api/v1/notifications", params={"user_id": "alice", "unread_only": True}).json()
    assert unread["count"] == 0


def test_queue_listing_by_status(client):
    post_txn(client)
    post_txn(client)
    client.post("/api/v1/alerts/process", params={"limit": 1})

    pending = client.get("/api/v1/alerts/queue", params={"status": "pending"}).json()
    completed = client.get("/api/v1/alerts/queue", params={"status": "completed"}).json()
    assert pending["count"] == 1
    assert completed["count"] == 1

    assert client.get("/api/v1/alerts/queue", params={"status": "bogus"}).status_code == 422


def test_retry_and_reclaim_endpoints(client):
    retry = client.post("/api/v1/alerts/queue/retry-failed").json()
    reclaim = client.post("/api/v1/alerts/queue/reclaim").json()
    assert retry["affected"] == 0
    assert reclaim["affected"] == 0


def test_thresholds_can_be_tuned_at_runtime(client):
    defaults = client.get("/api/v1/alerts/thresholds").json()
    assert defaults["unusual_amount_multiplier"] == 3.0

    updated = {**defaults, "suspicious_merchant_tokens": ["Grocer"]}
    res = client.put("/api/v1/alerts/thresholds", json=updated, params={"updated_by": "ops"})
    assert res.status_code == 200
    assert res.json()["suspicious_merchant_tokens"] == ["grocer"]

    post_txn(client, merchant="Corner Grocer")
    report = client.post("/api/v1/alerts/process").json()
    assert report["anomalies"] == 1


def test_invalid_thresholds_are_rejected(client):
    bad = {"unusual_amount_multiplier": 6, "high_risk_amount_multiplier": 4}
    assert client.put("/api/v1/alerts/thresholds", json=bad).status_code == 422


def test_websocket_receives_only_own_notifications(client):
    with client.websocket_connect("/api/v1/ws/notifications/bob") as bob_ws:
        post_txn(client, user_id="alice", merchant="Suspicious Store")
        client.post("/api/v1/alerts/process")
        bob_txn = post_txn(client, user_id="bob", merchant="Crypto ATM").json()
        client.post("/api/v1/alerts/process")

        message = bob_ws.receive_json()

    assert message["event"] == "INSERT"
    assert message["notification"]["user_id"] == "bob"
    assert message["notification"]["metadata"]["transaction_id"] == bob_txn["transaction"]["id"]


def test_batch_analytics_lists_runs_that_claimed_work(client):
    client.post("/api/v1/alerts/process")
    assert client.get("/api/v1/alerts/analytics").json() == []

    post_txn(client, merchant="Crypto ATM")
    report = client.post("/api/v1/alerts/process").json()

    runs = client.get("/api/v1/alerts/analytics").json()
    assert len(runs) == 1
    assert runs[0]["batch_id"] == report["batch_id"]
    assert runs[0]["claimed"] == 1
    assert runs[0]["anomalies"] == 1


def test_push_queue_gets_one_row_per_notification(client):
    txn = post_txn(client, merchant="Crypto ATM").json()
    post_txn(client, user_id="bob", merchant="Grocer")
    client.post("/api/v1/alerts/process")

    notification = client.get("/api/v1/notifications", params={"user_id": "alice"}).json()["notifications"][0]
    pushes = client.get("/api/v1/alerts/push-queue", params={"user_id": "alice"}).json()

    assert len(pushes) == 1
    assert pushes[0]["notification_id"] == notification["id"]
    assert pushes[0]["status"] == "pending"
    assert pushes[0]["subject"] == "⚠️ Crypto ATM"
    assert pushes[0]["content"]["data"]["transaction_id"] == txn["transaction"]["id"]
    assert client.get("/api/v1/alerts/push-queue", params={"user_id": "bob"}).json() == []
