from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager

import psycopg2
import pytest

from paygate.domain.statuses import NormalizedStatus, Severity
from paygate.errors import AuditSinkError
from paygate.logging import JsonFormatter
from paygate.pages import render_error_page, render_redirect_page
from paygate.repositories.pg_store import PgTransactionStore
from paygate.services.audit import AuditSink

from conftest import FailingTracker


def test_status_upsert_only_records_changes(tracker) -> None:
    assert tracker.upsert_status("O1", NormalizedStatus.PENDING, source="redirect")
    assert not tracker.upsert_status("O1", NormalizedStatus.PENDING, source="webhook")
    assert tracker.upsert_status("O1", NormalizedStatus.CHARGED, transaction_id="T1", source="webhook")

    trail = tracker.get_audit_trail("O1")
    assert [c.status for c in trail.status_history] == [NormalizedStatus.PENDING, NormalizedStatus.CHARGED]
    assert trail.session.transaction_id == "T1"


def test_concurrent_writers_converge(tracker) -> None:
    def write(source: str) -> bool:
        return tracker.upsert_status("O2", NormalizedStatus.CHARGED, transaction_id="T2", source=source)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(write, ["webhook", "redirect"] * 20))

    assert results.count(True) == 1
    trail = tracker.get_audit_trail("O2")
    assert trail.session.status is NormalizedStatus.CHARGED
    assert len(trail.status_history) == 1


def test_webhook_dedupe_key(tracker) -> None:
    assert tracker.record_webhook("O3", "success", {"a": 1})
    assert not tracker.record_webhook("O3", "success", {"a": 2})
    assert tracker.record_webhook("O3", "refunded", {"a": 3})


def test_audit_sink_swallows_tracker_errors(caplog) -> None:
    audit = AuditSink(FailingTracker())
    with caplog.at_level(logging.WARNING):
        audit.security_event("x", Severity.HIGH, "desc", order_id="O4")
        assert audit.webhook_received("O4", "success", {}) is None
        assert audit.audit_trail("O4") is None
    assert any(r.getMessage() == "audit write failed (continuing)" for r in caplog.records)


class _FakeCursor:
    def __init__(self, rows):
        self.rows = list(rows)
        self.executed: list[tuple[str, tuple]] = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        self.executed.append((sql, params))

    def fetchone(self):
        return self.rows.pop(0) if self.rows else None


class _FakePool:
    def __init__(self, rows=(), error: Exception | None = None):
        self.cursor = _FakeCursor(rows)
        self.error = error

    @contextmanager
    def connection(self):
        if self.error is not None:
            raise self.error
        pool = self

        class _Conn:
            def cursor(self):
                return pool.cursor

        yield _Conn()


def test_pg_upsert_writes_history_only_on_change() -> None:
    changed = _FakePool(rows=[("O5",)])
    assert PgTransactionStore(changed).upsert_status("O5", NormalizedStatus.CHARGED, source="webhook")
    assert len(changed.cursor.executed) == 2
    assert "payment_status_history" in changed.cursor.executed[1][0]

    unchanged = _FakePool(rows=[])
    assert not PgTransactionStore(unchanged).upsert_status("O5", NormalizedStatus.CHARGED, source="redirect")
    assert len(unchanged.cursor.executed) == 1


def test_pg_record_webhook_reports_first_delivery() -> None:
    assert PgTransactionStore(_FakePool(rows=[("O6",)])).record_webhook("O6", "success", {})
    assert not PgTransactionStore(_FakePool(rows=[])).record_webhook("O6", "success", {})


def test_pg_errors_become_audit_errors() -> None:
    store = PgTransactionStore(_FakePool(error=psycopg2.OperationalError("db down")))
    with pytest.raises(AuditSinkError):
        store.record_webhook("O7", "success", {})


def test_json_formatter_whitelists_extra_fields() -> None:
    record = logging.LogRecord("paygate", logging.INFO, __file__, 1, "hello", None, None)
    record.order_id = "O8"
    record.severity = Severity.HIGH
    record.secret = "nope"
    data = json.loads(JsonFormatter().format(record))
    assert data == {"level": "INFO", "name": "paygate", "message": "hello", "order_id": "O8", "severity": "high"}


def test_pages_escape_urls() -> None:
    url = 'https://shop.example.com/payment/success?order_id=O1&status=success"<script>'
    page = render_redirect_page(url)
    assert "&amp;status=success&quot;&lt;script&gt;" in page
    assert "<script>window.location.href" in page
    error = render_error_page("https://shop.example.com/payment/error", "Payment <Error>", "Bad & worse")
    assert "Payment &lt;Error&gt;" in error
    assert 'content="3;url=' in error
