from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from paygate.domain.models import (
    AuditTrail,
    PaymentSession,
    RefundResult,
    SecurityEvent,
    TransactionRecord,
)
from paygate.domain.statuses import NormalizedStatus


class TransactionTracker(ABC):
    """Persistence for payment sessions, gateway arrivals and security events.

    Implementations may raise :class:`paygate.errors.AuditSinkError`; callers go
    through :class:`paygate.services.audit.AuditSink`, which never lets a
    failure escape. Writes keyed by ``order_id`` must be upserts so webhook
    and browser-redirect deliveries for the same order can race safely.
    """

    name: str = "tracker"

    @abstractmethod
    def create_payment_session(self, session: PaymentSession) -> None:
        """Insert or refresh the tracked session for ``session.order_id``."""

    @abstractmethod
    def update_session_response(self, order_id: str, response: dict[str, Any]) -> None:
        """Attach the gateway's session response (session id, payment links)."""

    @abstractmethod
    def record_transaction_response(self, record: TransactionRecord) -> None:
        """Append one gateway arrival."""

    @abstractmethod
    def log_security_event(self, event: SecurityEvent) -> None:
        """Append a security audit record."""

    @abstractmethod
    def upsert_status(
        self,
        order_id: str,
        status: NormalizedStatus,
        *,
        transaction_id: str | None = None,
        source: str,
    ) -> bool:
        """Set the current status of an order.

        Returns True when the stored status changed (a history row was
        written), False when the order already had this status.
        """

    @abstractmethod
    def record_webhook(self, order_id: str, event_type: str, payload: dict[str, Any]) -> bool:
        """Remember a webhook delivery; True only the first time the pair is seen."""

    @abstractmethod
    def record_refund(self, refund: RefundResult) -> None:
        """Insert or update a refund keyed by its reference number."""

    @abstractmethod
    def get_audit_trail(self, order_id: str) -> AuditTrail:
        """Everything recorded for one order."""
