from __future__ import annotations

import json
import pathlib
import sys
from typing import Any, Callable

import httpx
import pytest

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from paygate.config import GatewayConfig, Settings
from paygate.errors import AuditSinkError
from paygate.gateway.signature import SignatureVerifier
from paygate.repositories.base import TransactionTracker
from paygate.repositories.memory_store import InMemoryTransactionStore

RESPONSE_KEY = "test-response-key"
API_KEY = "key_test"
MERCHANT_ID = "MID001"
APP_URL = "https://shop.example.com"
SANDBOX_URL = "https://smartgatewayuat.hdfcbank.com"


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "hdfc_api_key": API_KEY,
        "hdfc_merchant_id": MERCHANT_ID,
        "hdfc_response_key": RESPONSE_KEY,
        "app_url": APP_URL,
        "api_bearer_token": "testtoken",
        "db_host": "",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_config(**overrides: Any) -> GatewayConfig:
    return GatewayConfig.from_settings(make_settings(**overrides))


class FailingTracker(TransactionTracker):
    """Tracker whose every call blows up."""

    name = "failing"

    def __init__(self) -> None:
        self.calls = 0

    def _fail(self) -> Any:
        self.calls += 1
        raise AuditSinkError("tracker down")

    def create_payment_session(self, session):  # type: ignore[override]
        return self._fail()

    def update_session_response(self, order_id, response):  # type: ignore[override]
        return self._fail()

    def record_transaction_response(self, record):  # type: ignore[override]
        return self._fail()

    def log_security_event(self, event):  # type: ignore[override]
        return self._fail()

    def upsert_status(self, order_id, status, *, transaction_id=None, source):  # type: ignore[override]
        return self._fail()

    def record_webhook(self, order_id, event_type, payload):  # type: ignore[override]
        return self._fail()

    def record_refund(self, refund):  # type: ignore[override]
        return self._fail()

    def get_audit_trail(self, order_id):  # type: ignore[override]
        return self._fail()


class FakeGateway:
    """Records outbound requests and answers them from a handler."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response] | None = None):
        self.requests: list[httpx.Request] = []
        self.handler = handler or (lambda request: httpx.Response(200, json={}))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    @property
    def last_json(self) -> dict[str, Any]:
        return json.loads(self.requests[-1].content)


@pytest.fixture
def verifier() -> SignatureVerifier:
    return SignatureVerifier(RESPONSE_KEY)


@pytest.fixture
def tracker() -> InMemoryTransactionStore:
    return InMemoryTransactionStore()


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()
