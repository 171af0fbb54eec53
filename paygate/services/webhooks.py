from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from paygate.domain.models import (
    WebhookEvent,
    WebhookFailedEvent,
    WebhookPendingEvent,
    WebhookRefundedEvent,
    WebhookSuccessEvent,
    parse_webhook_event,
)
from paygate.domain.statuses import Severity, WebhookEventType
from paygate.errors import InvalidGatewayEvent, SignatureMismatch
from paygate.gateway.signature import SignatureVerifier
from paygate.services.audit import AuditSink
from paygate.services.notifications import LoggingNotifier, Notifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookOutcome:
    order_id: str
    event_type: str
    handled: bool
    duplicate: bool = False


class WebhookProcessor:
    """Verifies and applies server-to-server webhook deliveries.

    Once the signature checks out the delivery is always acknowledged: side
    effect failures are logged, never reported back to the gateway. A
    redelivered ``(order_id, event_type)`` pair re-applies the status upsert
    only, so it can repair a first attempt whose write was lost.
    """

    def __init__(self, verifier: SignatureVerifier, audit: AuditSink, notifier: Notifier | None = None):
        self.verifier = verifier
        self.audit = audit
        self.notifier = notifier or LoggingNotifier()
        self._handlers: dict[WebhookEventType, Callable[[Any, bool], None]] = {
            WebhookEventType.SUCCESS: self._on_success,
            WebhookEventType.FAILED: self._on_failed,
            WebhookEventType.PENDING: self._on_pending,
            WebhookEventType.REFUNDED: self._on_refunded,
        }

    def process(self, fields: Mapping[str, Any]) -> WebhookOutcome:
        order_id = fields.get("order_id")
        if not order_id:
            raise InvalidGatewayEvent("Webhook payload has no order_id")
        order_id = str(order_id)

        if not self.verifier.verify(fields):
            received = fields.get("signature")
            self.audit.security_event(
                "webhook_signature_failure",
                Severity.HIGH,
                f"Webhook signature verification failed for order {order_id}",
                order_id=order_id,
                vulnerability_type="signature_mismatch",
                payload={"received_signature": received, "event_type": fields.get("event_type")},
            )
            raise SignatureMismatch(order_id, str(received) if received is not None else None)

        event = parse_webhook_event(fields)
        logger.info(
            "webhook received",
            extra={"order_id": order_id, "event_type": event.event_type, "status": event.raw_status or ""},
        )
        if event.kind is None:
            logger.warning(
                "unknown webhook event type ignored",
                extra={"order_id": order_id, "event_type": event.event_type},
            )
            return WebhookOutcome(order_id=order_id, event_type=event.event_type, handled=False)

        # Status upserts run on every delivery; notification and the security
        # record run once per (order_id, event_type).
        duplicate = self.audit.webhook_received(order_id, event.event_type, dict(fields)) is False
        if duplicate:
            logger.info(
                "duplicate webhook acknowledged",
                extra={"order_id": order_id, "event_type": event.event_type},
            )

        try:
            self._handlers[event.kind](event, duplicate)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "webhook handler failed",
                extra={"order_id": order_id, "event_type": event.event_type, "error": str(exc)},
                exc_info=True,
            )
        return WebhookOutcome(order_id=order_id, event_type=event.event_type, handled=True, duplicate=duplicate)

    def _apply(self, event: WebhookEvent, duplicate: bool, severity: Severity, description: str) -> None:
        target = event.target_status
        if target is None:
            return
        self.audit.status_update(
            event.order_id,
            target,
            transaction_id=event.transaction_id,
            source="webhook",
        )
        if duplicate:
            return
        self.audit.security_event(
            f"webhook_{event.event_type}",
            severity,
            f"{description} for order {event.order_id}",
            order_id=event.order_id,
            payload={
                "transaction_id": event.transaction_id,
                "amount": event.amount,
                "status": event.raw_status,
                "timestamp": event.timestamp,
            },
        )
        try:
            self.notifier.notify(event.order_id, target.value, event)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "notification failed (continuing)",
                extra={"order_id": event.order_id, "event_type": event.event_type, "error": str(exc)},
            )

    def _on_success(self, event: WebhookSuccessEvent, duplicate: bool) -> None:
        self._apply(event, duplicate, Severity.LOW, "Payment confirmed by webhook")

    def _on_failed(self, event: WebhookFailedEvent, duplicate: bool) -> None:
        self._apply(event, duplicate, Severity.MEDIUM, "Payment failure reported by webhook")

    def _on_pending(self, event: WebhookPendingEvent, duplicate: bool) -> None:
        self._apply(event, duplicate, Severity.LOW, "Payment pending reported by webhook")

    def _on_refunded(self, event: WebhookRefundedEvent, duplicate: bool) -> None:
        self._apply(event, duplicate, Severity.LOW, "Refund reported by webhook")
