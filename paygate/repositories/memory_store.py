from __future__ import annotations

import copy
import threading
from datetime import datetime, timezone
from typing import Any, Dict

from paygate.domain.models import (
    AuditTrail,
    PaymentSession,
    RefundResult,
    SecurityEvent,
    StatusChange,
    TrackedSession,
    TransactionRecord,
)
from paygate.domain.statuses import NormalizedStatus

from .base import TransactionTracker


class InMemoryTransactionStore(TransactionTracker):
    """Simple in-memory transaction tracker.

    Used when no database is configured and in tests. A single lock makes
    every method atomic so concurrent webhook and redirect writers behave
    like the database upserts.
    """

    name = "memory"

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.sessions: Dict[str, TrackedSession] = {}
        self.transactions: Dict[str, list[TransactionRecord]] = {}
        self.status_history: Dict[str, list[StatusChange]] = {}
        self.security_events: Dict[str, list[SecurityEvent]] = {}
        self.webhooks: Dict[tuple[str, str], dict[str, Any]] = {}
        self.refunds: Dict[str, RefundResult] = {}

    def _session(self, order_id: str) -> TrackedSession:
        tracked = self.sessions.get(order_id)
        if tracked is None:
            tracked = TrackedSession(order_id=order_id)
            self.sessions[order_id] = tracked
        return tracked

    def create_payment_session(self, session: PaymentSession) -> None:
        with self._lock:
            tracked = self._session(session.order_id)
            tracked.session = session
            tracked.updated_at = datetime.now(timezone.utc)

    def update_session_response(self, order_id: str, response: dict[str, Any]) -> None:
        with self._lock:
            tracked = self._session(order_id)
            links = response.get("payment_links") or {}
            tracked.session_id = response.get("session_id") or response.get("id") or tracked.session_id
            if isinstance(links, dict) and links.get("web"):
                tracked.payment_link_web = str(links["web"])
            tracked.session_response = dict(response)
            tracked.updated_at = datetime.now(timezone.utc)

    def record_transaction_response(self, record: TransactionRecord) -> None:
        with self._lock:
            self.transactions.setdefault(record.order_id, []).append(record)

    def log_security_event(self, event: SecurityEvent) -> None:
        with self._lock:
            self.security_events.setdefault(event.order_id or "", []).append(event)

    def upsert_status(
        self,
        order_id: str,
        status: NormalizedStatus,
        *,
        transaction_id: str | None = None,
        source: str,
    ) -> bool:
        with self._lock:
            tracked = self._session(order_id)
            if transaction_id:
                tracked.transaction_id = transaction_id
            if tracked.status == status:
                return False
            tracked.status = status
            tracked.updated_at = datetime.now(timezone.utc)
            self.status_history.setdefault(order_id, []).append(
                StatusChange(
                    order_id=order_id,
                    status=status,
                    transaction_id=transaction_id,
                    source=source,
                )
            )
            return True

    def record_webhook(self, order_id: str, event_type: str, payload: dict[str, Any]) -> bool:
        with self._lock:
            key = (order_id, event_type)
            if key in self.webhooks:
                return False
            self.webhooks[key] = dict(payload)
            return True

    def record_refund(self, refund: RefundResult) -> None:
        with self._lock:
            self.refunds[refund.refund_ref_no] = refund

    def get_audit_trail(self, order_id: str) -> AuditTrail:
        with self._lock:
            return AuditTrail(
                order_id=order_id,
                session=copy.deepcopy(self.sessions.get(order_id)),
                transactions=list(self.transactions.get(order_id, [])),
                status_history=list(self.status_history.get(order_id, [])),
                security_events=list(self.security_events.get(order_id, [])),
                refunds=[r for r in self.refunds.values() if r.order_id == order_id],
            )
