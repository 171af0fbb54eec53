from __future__ import annotations

import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from fastapi.testclient import TestClient

from paygate.domain.statuses import NormalizedStatus
from paygate.errors import ConfigurationError
from paygate.main import create_app

from conftest import APP_URL, FailingTracker, FakeGateway, make_settings

AUTH = {"Authorization": "Bearer testtoken"}
SUCCESS_URL = f"{APP_URL}/payment/success"
ERROR_URL = f"{APP_URL}/payment/error"


def _client(tracker=None, gateway: FakeGateway | None = None, **overrides) -> TestClient:
    gateway = gateway or FakeGateway()
    app = create_app(settings=make_settings(**overrides), tracker=tracker, transport=gateway.transport)
    return TestClient(app)


def _query(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


def test_health_endpoint(tracker) -> None:
    resp = _client(tracker).get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["environment"] == "sandbox"
    assert body["tracker"] == "memory"


def test_app_refuses_to_start_without_secrets(tracker) -> None:
    with pytest.raises(ConfigurationError):
        create_app(settings=make_settings(hdfc_response_key=""), tracker=tracker)


def test_create_session(tracker) -> None:
    gateway = FakeGateway(
        lambda request: httpx.Response(200, json={"id": "S1", "payment_links": {"web": "https://pay.example/S1"}})
    )
    client = _client(tracker, gateway)
    resp = client.post(
        "/api/payment/session",
        json={
            "amount": "1250.50",
            "customerName": "Asha Rao",
            "customerEmail": "asha@example.com",
            "customerPhone": "+91 9876543210",
        },
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["redirect_url"] == "https://pay.example/S1"
    assert body["order_id"].startswith("ORD")
    assert gateway.last_json["customer_phone"] == "+91 9876543210"
    assert gateway.last_json["return_url"] == f"{APP_URL}/api/payment/response"


@pytest.mark.parametrize(
    "payload",
    [
        {"amount": "0", "customer_name": "A", "customer_email": "a@b.co", "customer_phone": "9876543210"},
        {"amount": "10", "customer_name": "A", "customer_email": "not-an-email", "customer_phone": "9876543210"},
        {"amount": "10", "customer_name": "A", "customer_email": "a@b.co", "customer_phone": "12345"},
        {"amount": "10", "customer_email": "a@b.co", "customer_phone": "9876543210"},
    ],
)
def test_create_session_validation(tracker, payload) -> None:
    gateway = FakeGateway()
    resp = _client(tracker, gateway).post("/api/payment/session", json=payload)
    assert resp.status_code == 422
    assert gateway.requests == []


def test_create_session_upstream_error(tracker) -> None:
    gateway = FakeGateway(lambda request: httpx.Response(400, text='{"error_message":"bad amount"}'))
    resp = _client(tracker, gateway).post(
        "/api/payment/session",
        json={"amount": "10", "customer_name": "A B", "customer_email": "a@b.co", "customer_phone": "9876543210"},
    )
    assert resp.status_code == 502
    detail = resp.json()["detail"]
    assert detail["upstream_status"] == 400
    assert "bad amount" in detail["body"]


def test_create_session_timeout(tracker) -> None:
    def timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    resp = _client(tracker, FakeGateway(timeout)).post(
        "/api/payment/session",
        json={"amount": "10", "customer_name": "A B", "customer_email": "a@b.co", "customer_phone": "9876543210"},
    )
    assert resp.status_code == 504


def test_status_get_and_post(tracker) -> None:
    gateway = FakeGateway(
        lambda request: httpx.Response(200, json={"order_id": "ORD1", "order_status": "CHARGED", "transaction_id": "T1"})
    )
    client = _client(tracker, gateway)
    for resp in (
        client.get("/api/payment/status", params={"order_id": "ORD1"}),
        client.post("/api/payment/status", json={"order_id": "ORD1"}),
    ):
        assert resp.status_code == 200
        status_body = resp.json()["payment_status"]
        assert status_body["status"] == "CHARGED"
        assert status_body["normalized_status"] == "charged"
        assert status_body["transaction_id"] == "T1"
    assert client.get("/api/payment/status").status_code == 422


def test_refund_requires_bearer_token(tracker) -> None:
    gateway = FakeGateway(lambda request: httpx.Response(200, json={"status": "success"}))
    client = _client(tracker, gateway)
    payload = {"order_id": "ORD1", "refund_amount": "50"}

    assert client.post("/api/payment/refund", json=payload).status_code == 401
    assert client.post("/api/payment/refund", json=payload, headers={"Authorization": "Bearer nope"}).status_code == 401
    resp = client.post("/api/payment/refund", json=payload, headers=AUTH)
    assert resp.status_code == 200
    body = resp.json()
    assert body["refund"]["status"] == "success"
    assert body["refund"]["refund_amount"] == "50.00"
    assert body["message"] == "Refund processed successfully"


def test_response_post_renders_redirect_page(tracker, verifier) -> None:
    client = _client(tracker)
    signed = verifier.sign({"order_id": "ORD5", "order_status": "CHARGED", "transaction_id": "T5"})
    resp = client.post("/api/payment/response", data=signed)

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/html")
    assert SUCCESS_URL in resp.text
    assert "status=success" in resp.text
    assert tracker.get_audit_trail("ORD5").session.status is NormalizedStatus.CHARGED


def test_response_post_forged_signature(tracker, verifier) -> None:
    client = _client(tracker)
    signed = verifier.sign({"order_id": "ORD6", "order_status": "FAILED"})
    signed["order_status"] = "CHARGED"
    resp = client.post("/api/payment/response", data=signed)

    assert resp.status_code == 400
    assert "signature_verification_failed" in resp.text
    assert tracker.get_audit_trail("ORD6").status_history == []


def test_response_post_unknown_status(tracker, verifier) -> None:
    signed = verifier.sign({"order_id": "ORD7", "order_status": "refund_initiated"})
    resp = _client(tracker).post("/api/payment/response", data=signed)
    assert resp.status_code == 200
    assert ERROR_URL in resp.text
    assert "status=unknown" in resp.text


def test_response_post_processing_error(tracker, verifier) -> None:
    client = _client(tracker)

    def boom(*args, **kwargs):
        raise RuntimeError("unexpected")

    client.app.state.gateway.responses.handle = boom
    resp = client.post("/api/payment/response", data=verifier.sign({"order_id": "ORD8", "order_status": "CHARGED"}))
    assert resp.status_code == 500
    assert "processing_error" in resp.text


def test_response_get_redirects_with_aliases(tracker, verifier) -> None:
    signed = verifier.sign({"order_id": "ORD9", "status": "CHARGED", "txn_id": "T9"})
    resp = _client(tracker).get("/api/payment/response", params=signed, follow_redirects=False)

    assert resp.status_code == 303
    location = resp.headers["location"]
    assert location.startswith(SUCCESS_URL)
    assert _query(location) == {"order_id": "ORD9", "transaction_id": "T9", "status": "success"}


def test_response_get_forged_signature(tracker, verifier) -> None:
    signed = verifier.sign({"order_id": "ORD10", "status": "PENDING"})
    signed["status"] = "CHARGED"
    resp = _client(tracker).get("/api/payment/response", params=signed, follow_redirects=False)
    assert resp.status_code == 303
    assert resp.headers["location"].startswith(ERROR_URL)
    assert _query(resp.headers["location"]) == {"message": "signature_verification_failed"}


def test_response_survives_broken_tracker(verifier) -> None:
    signed = verifier.sign({"order_id": "ORD11", "order_status": "CHARGED", "transaction_id": "T11"})
    resp = _client(FailingTracker()).post("/api/payment/response", data=signed)
    assert resp.status_code == 200
    assert SUCCESS_URL in resp.text


def test_webhook_endpoint(tracker, verifier) -> None:
    client = _client(tracker)
    signed = verifier.sign(
        {"event_type": "success", "order_id": "ORD12", "order_status": "CHARGED", "transaction_id": "T12"}
    )
    resp = client.post("/api/webhook", json=signed)
    assert resp.status_code == 200
    assert resp.json() == {"status": "success", "message": "Webhook processed successfully"}

    again = client.post("/api/webhook", json=signed)
    assert again.status_code == 200
    assert len(tracker.get_audit_trail("ORD12").status_history) == 1


def test_webhook_bare_number_amount_verifies(tracker, verifier) -> None:
    signed = verifier.sign(
        {"event_type": "success", "order_id": "ORD16", "status": "CHARGED", "amount": "100.00", "count": "3"}
    )
    body = json.dumps(signed).replace('"amount": "100.00"', '"amount": 100.00').replace('"count": "3"', '"count": 3')
    assert '"amount": 100.00' in body and '"count": 3' in body

    resp = _client(tracker).post("/api/webhook", content=body, headers={"Content-Type": "application/json"})
    assert resp.status_code == 200
    assert tracker.get_audit_trail("ORD16").session.status is NormalizedStatus.CHARGED


def test_webhook_rejections(tracker, verifier) -> None:
    client = _client(tracker)
    signed = verifier.sign({"event_type": "success", "order_id": "ORD13"})
    signed["event_type"] = "refunded"

    bad_sig = client.post("/api/webhook", json=signed)
    assert bad_sig.status_code == 400
    assert bad_sig.json() == {"status": "error", "message": "Invalid signature"}
    assert client.post("/api/webhook", content=b"not json", headers={"Content-Type": "application/json"}).status_code == 400
    assert client.post("/api/webhook", json=["a", "b"]).status_code == 400
    assert client.post("/api/webhook", json={"event_type": "success"}).status_code == 400


def test_webhook_unknown_type_and_broken_tracker(verifier) -> None:
    client = _client(FailingTracker())
    unknown = verifier.sign({"event_type": "chargeback", "order_id": "ORD14"})
    assert client.post("/api/webhook", json=unknown).status_code == 200
    known = verifier.sign({"event_type": "failed", "order_id": "ORD14", "order_status": "FAILED"})
    assert client.post("/api/webhook", json=known).status_code == 200


def test_admin_audit_trail(tracker, verifier) -> None:
    client = _client(tracker)
    client.post(
        "/api/payment/response",
        data=verifier.sign({"order_id": "ORD15", "order_status": "FAILED", "failure_reason": "Declined"}),
    )

    assert client.get("/api/admin/transactions/ORD15").status_code == 401
    resp = client.get("/api/admin/transactions/ORD15", headers=AUTH)
    assert resp.status_code == 200
    trail = resp.json()
    assert trail["order_id"] == "ORD15"
    assert trail["transactions"][0]["signature_verified"] is True
    assert trail["status_history"][0]["status"] == "failed"
    assert [e["event_type"] for e in trail["security_events"]] == ["payment_failure"]

    assert client.get("/api/admin/transactions/NOPE", headers=AUTH).status_code == 404


def test_admin_audit_trail_tracker_down() -> None:
    resp = _client(FailingTracker()).get("/api/admin/transactions/ORD1", headers=AUTH)
    assert resp.status_code == 503
