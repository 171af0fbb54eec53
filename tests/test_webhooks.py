from __future__ import annotations

import pytest

from paygate.domain.models import (
    AuditTrail,
    UnrecognizedWebhookEvent,
    WebhookRefundedEvent,
    WebhookSuccessEvent,
    parse_webhook_event,
)
from paygate.domain.statuses import NormalizedStatus, Severity
from paygate.errors import AuditSinkError, InvalidGatewayEvent, SignatureMismatch
from paygate.repositories.memory_store import InMemoryTransactionStore
from paygate.services.audit import AuditSink
from paygate.services.notifications import Notifier
from paygate.services.webhooks import WebhookProcessor

from conftest import FailingTracker


class RecordingNotifier(Notifier):
    def __init__(self, fail: bool = False) -> None:
        self.calls: list[tuple[str, str]] = []
        self.fail = fail

    def notify(self, order_id, outcome, event) -> None:
        self.calls.append((order_id, outcome))
        if self.fail:
            raise RuntimeError("smtp down")


def _payload(event_type: str = "success", **extra) -> dict:
    payload = {
        "event_type": event_type,
        "order_id": "ORD100",
        "order_status": "CHARGED",
        "amount": "100.00",
        "transaction_id": "TXN100",
        "timestamp": "2024-01-01T10:00:00Z",
    }
    payload.update(extra)
    return payload


def test_parse_webhook_event_dispatches_on_type() -> None:
    assert isinstance(parse_webhook_event(_payload()), WebhookSuccessEvent)
    assert isinstance(parse_webhook_event(_payload("refunded")), WebhookRefundedEvent)
    unknown = parse_webhook_event(_payload("chargeback"))
    assert isinstance(unknown, UnrecognizedWebhookEvent)
    assert unknown.target_status is None


def test_success_webhook_updates_status_and_notifies(verifier, tracker) -> None:
    notifier = RecordingNotifier()
    processor = WebhookProcessor(verifier, AuditSink(tracker), notifier)
    outcome = processor.process(verifier.sign(_payload()))

    assert outcome.handled and not outcome.duplicate
    trail = tracker.get_audit_trail("ORD100")
    assert trail.session.status is NormalizedStatus.CHARGED
    assert trail.session.transaction_id == "TXN100"
    assert [c.source for c in trail.status_history] == ["webhook"]
    assert [e.event_type for e in trail.security_events] == ["webhook_success"]
    assert notifier.calls == [("ORD100", "charged")]


def test_redelivery_has_no_additional_effect(verifier, tracker) -> None:
    notifier = RecordingNotifier()
    processor = WebhookProcessor(verifier, AuditSink(tracker), notifier)
    signed = verifier.sign(_payload("failed", order_status="FAILED"))

    processor.process(signed)
    after_first = tracker.get_audit_trail("ORD100")
    second = processor.process(signed)
    after_second = tracker.get_audit_trail("ORD100")

    assert second.duplicate
    assert after_first == after_second
    assert notifier.calls == [("ORD100", "failed")]


def test_bad_signature_is_rejected_and_logged(verifier, tracker) -> None:
    processor = WebhookProcessor(verifier, AuditSink(tracker))
    signed = verifier.sign(_payload())
    signed["amount"] = "1.00"

    with pytest.raises(SignatureMismatch):
        processor.process(signed)
    trail = tracker.get_audit_trail("ORD100")
    assert trail.status_history == []
    assert [(e.event_type, e.severity) for e in trail.security_events] == [
        ("webhook_signature_failure", Severity.HIGH)
    ]


def test_unsigned_webhook_is_rejected(verifier, tracker) -> None:
    with pytest.raises(SignatureMismatch):
        WebhookProcessor(verifier, AuditSink(tracker)).process(_payload())


def test_missing_order_id_is_invalid(verifier, tracker) -> None:
    payload = verifier.sign(_payload(order_id=""))
    with pytest.raises(InvalidGatewayEvent):
        WebhookProcessor(verifier, AuditSink(tracker)).process(payload)


def test_unknown_event_type_is_acknowledged_without_effects(verifier, tracker) -> None:
    outcome = WebhookProcessor(verifier, AuditSink(tracker)).process(verifier.sign(_payload("chargeback")))
    assert not outcome.handled
    assert tracker.get_audit_trail("ORD100").status_history == []


def test_notifier_failure_does_not_fail_delivery(verifier, tracker) -> None:
    notifier = RecordingNotifier(fail=True)
    outcome = WebhookProcessor(verifier, AuditSink(tracker), notifier).process(verifier.sign(_payload()))
    assert outcome.handled
    assert tracker.get_audit_trail("ORD100").session.status is NormalizedStatus.CHARGED


def test_broken_tracker_still_runs_handler(verifier) -> None:
    notifier = RecordingNotifier()
    failing = FailingTracker()
    outcome = WebhookProcessor(verifier, AuditSink(failing), notifier).process(verifier.sign(_payload()))
    assert outcome.handled
    assert notifier.calls == [("ORD100", "charged")]
    assert failing.calls >= 2


class FlakyStatusTracker(InMemoryTransactionStore):
    """In-memory tracker whose first status write fails."""

    def __init__(self) -> None:
        super().__init__()
        self.status_failures = 1

    def upsert_status(self, order_id, status, *, transaction_id=None, source):  # type: ignore[override]
        if self.status_failures:
            self.status_failures -= 1
            raise AuditSinkError("connection reset")
        return super().upsert_status(order_id, status, transaction_id=transaction_id, source=source)


def test_redelivery_repairs_lost_status_write(verifier) -> None:
    flaky = FlakyStatusTracker()
    notifier = RecordingNotifier()
    processor = WebhookProcessor(verifier, AuditSink(flaky), notifier)
    signed = verifier.sign(_payload())

    first = processor.process(signed)
    assert not first.duplicate
    assert flaky.get_audit_trail("ORD100").session is None

    second = processor.process(signed)
    assert second.duplicate
    trail = flaky.get_audit_trail("ORD100")
    assert trail.session.status is NormalizedStatus.CHARGED
    assert len(trail.status_history) == 1
    assert [e.event_type for e in trail.security_events] == ["webhook_success"]
    assert notifier.calls == [("ORD100", "charged")]


def test_unrecognized_event_is_not_applied(verifier, tracker) -> None:
    processor = WebhookProcessor(verifier, AuditSink(tracker))
    processor._apply(parse_webhook_event(_payload("chargeback")), False, Severity.LOW, "ignored")
    assert tracker.get_audit_trail("ORD100") == AuditTrail(order_id="ORD100")
