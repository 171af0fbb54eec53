"""Best-effort audit path.

Payment-critical control flow never depends on audit logging: every call into
the tracker goes through :class:`AuditSink`, which logs and drops failures.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, TypeVar

from paygate.domain.models import (
    AuditTrail,
    PaymentSession,
    RefundResult,
    SecurityEvent,
    TransactionRecord,
)
from paygate.domain.statuses import NormalizedStatus, Severity
from paygate.repositories.base import TransactionTracker

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AuditSink:
    """Non-throwing facade over a :class:`TransactionTracker`."""

    def __init__(self, tracker: TransactionTracker):
        self.tracker = tracker

    def _safe(self, operation: str, order_id: str | None, call: Callable[[], T]) -> T | None:
        try:
            return call()
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "audit write failed (continuing)",
                extra={
                    "operation": operation,
                    "order_id": order_id or "",
                    "error": str(exc),
                },
            )
            return None

    def session_created(self, session: PaymentSession) -> None:
        self._safe(
            "create_payment_session",
            session.order_id,
            lambda: self.tracker.create_payment_session(session),
        )

    def session_response(self, order_id: str, response: dict[str, Any]) -> None:
        self._safe(
            "update_session_response",
            order_id,
            lambda: self.tracker.update_session_response(order_id, response),
        )

    def transaction_response(self, record: TransactionRecord) -> None:
        self._safe(
            "record_transaction_response",
            record.order_id,
            lambda: self.tracker.record_transaction_response(record),
        )

    def security_event(
        self,
        event_type: str,
        severity: Severity,
        description: str,
        *,
        order_id: str | None,
        payload: dict[str, Any] | None = None,
        vulnerability_type: str | None = None,
    ) -> None:
        event = SecurityEvent(
            event_type=event_type,
            severity=severity,
            description=description,
            order_id=order_id,
            payload=dict(payload or {}),
            vulnerability_type=vulnerability_type,
        )
        log = logger.warning if severity is Severity.HIGH else logger.info
        log(
            "security event",
            extra={"event_type": event_type, "severity": severity, "order_id": order_id or ""},
        )
        self._safe("log_security_event", order_id, lambda: self.tracker.log_security_event(event))

    def status_update(
        self,
        order_id: str,
        status: NormalizedStatus,
        *,
        transaction_id: str | None,
        source: str,
    ) -> bool | None:
        """Upsert the order status. ``None`` means the tracker was unavailable."""
        return self._safe(
            "upsert_status",
            order_id,
            lambda: self.tracker.upsert_status(
                order_id, status, transaction_id=transaction_id, source=source
            ),
        )

    def webhook_received(self, order_id: str, event_type: str, payload: dict[str, Any]) -> bool | None:
        """``False`` for a redelivery, ``None`` when the tracker was unavailable."""
        return self._safe(
            "record_webhook",
            order_id,
            lambda: self.tracker.record_webhook(order_id, event_type, payload),
        )

    def refund(self, refund: RefundResult) -> None:
        self._safe("record_refund", refund.order_id, lambda: self.tracker.record_refund(refund))

    def audit_trail(self, order_id: str) -> AuditTrail | None:
        return self._safe("get_audit_trail", order_id, lambda: self.tracker.get_audit_trail(order_id))
