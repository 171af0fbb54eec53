from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, ClassVar, Mapping

from .statuses import NormalizedStatus, Severity, WebhookEventType

DEFAULT_SIGNATURE_ALGORITHM = "HMAC-SHA256"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _first(fields: Mapping[str, Any], *keys: str) -> str | None:
    """Return the first non-empty value among ``keys`` as text."""
    for key in keys:
        value = fields.get(key)
        if value is not None and value != "":
            return str(value)
    return None


def _frozen(fields: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(fields))


@dataclass(frozen=True)
class PaymentSession:
    """One checkout attempt. ``order_id`` is the join key for everything after."""

    order_id: str
    amount: str
    customer_id: str
    customer_email: str
    customer_phone: str
    description: str
    return_url: str
    first_name: str = ""
    last_name: str = ""
    currency: str = "INR"
    created_at: datetime = field(default_factory=_utcnow)

    def to_payload(self, payment_page_client_id: str) -> dict[str, str]:
        return {
            "order_id": self.order_id,
            "amount": self.amount,
            "customer_id": self.customer_id,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "payment_page_client_id": payment_page_client_id,
            "return_url": self.return_url,
            "description": self.description,
            "first_name": self.first_name,
            "last_name": self.last_name,
        }


@dataclass(frozen=True)
class GatewayResponseEvent:
    """A single browser-redirect arrival from the gateway.

    Alias reconciliation happens here, once: ``transaction_id`` falls back to
    ``txn_id`` and ``order_status`` falls back to ``status``. ``fields`` keeps
    the raw bag exactly as received, which is what the signature covers.
    """

    fields: Mapping[str, Any] = field(compare=False, hash=False)
    order_id: str | None
    transaction_id: str | None
    raw_status: str | None
    signature: str | None
    signature_algorithm: str = DEFAULT_SIGNATURE_ALGORITHM
    amount: str | None = None
    payment_method: str | None = None
    bank_ref_no: str | None = None
    failure_reason: str | None = None
    error_code: str | None = None
    received_at: datetime = field(default_factory=_utcnow)

    @property
    def status(self) -> NormalizedStatus:
        return NormalizedStatus.from_raw(self.raw_status)

    @classmethod
    def from_fields(cls, fields: Mapping[str, Any]) -> "GatewayResponseEvent":
        return cls(
            fields=_frozen(fields),
            order_id=_first(fields, "order_id"),
            transaction_id=_first(fields, "transaction_id", "txn_id"),
            raw_status=_first(fields, "order_status", "status"),
            signature=_first(fields, "signature"),
            signature_algorithm=_first(fields, "signature_algorithm") or DEFAULT_SIGNATURE_ALGORITHM,
            amount=_first(fields, "amount"),
            payment_method=_first(fields, "payment_method"),
            bank_ref_no=_first(fields, "bank_ref_no"),
            failure_reason=_first(fields, "failure_reason"),
            error_code=_first(fields, "error_code"),
        )


@dataclass(frozen=True)
class WebhookEvent:
    """Base of the webhook tagged union; use :func:`parse_webhook_event`."""

    kind: ClassVar[WebhookEventType | None] = None

    event_type: str
    order_id: str
    fields: Mapping[str, Any] = field(compare=False, hash=False)
    raw_status: str | None = None
    amount: str | None = None
    transaction_id: str | None = None
    timestamp: str | None = None
    signature: str | None = None

    @property
    def target_status(self) -> NormalizedStatus | None:
        return self.kind.target_status if self.kind else None


@dataclass(frozen=True)
class WebhookSuccessEvent(WebhookEvent):
    kind: ClassVar[WebhookEventType | None] = WebhookEventType.SUCCESS


@dataclass(frozen=True)
class WebhookFailedEvent(WebhookEvent):
    kind: ClassVar[WebhookEventType | None] = WebhookEventType.FAILED


@dataclass(frozen=True)
class WebhookPendingEvent(WebhookEvent):
    kind: ClassVar[WebhookEventType | None] = WebhookEventType.PENDING


@dataclass(frozen=True)
class WebhookRefundedEvent(WebhookEvent):
    kind: ClassVar[WebhookEventType | None] = WebhookEventType.REFUNDED


@dataclass(frozen=True)
class UnrecognizedWebhookEvent(WebhookEvent):
    """Event type we deliberately ignore (acknowledged, not retried)."""


_WEBHOOK_TYPES: dict[str, type[WebhookEvent]] = {
    WebhookEventType.SUCCESS.value: WebhookSuccessEvent,
    WebhookEventType.FAILED.value: WebhookFailedEvent,
    WebhookEventType.PENDING.value: WebhookPendingEvent,
    WebhookEventType.REFUNDED.value: WebhookRefundedEvent,
}


def parse_webhook_event(fields: Mapping[str, Any]) -> WebhookEvent:
    """Build the typed webhook event. Caller guarantees ``order_id`` is present."""
    event_type = _first(fields, "event_type") or ""
    event_cls = _WEBHOOK_TYPES.get(event_type, UnrecognizedWebhookEvent)
    return event_cls(
        event_type=event_type,
        order_id=_first(fields, "order_id") or "",
        fields=_frozen(fields),
        raw_status=_first(fields, "order_status", "status"),
        amount=_first(fields, "amount"),
        transaction_id=_first(fields, "transaction_id", "txn_id"),
        timestamp=_first(fields, "timestamp"),
        signature=_first(fields, "signature"),
    )


@dataclass
class SessionResult:
    order_id: str
    redirect_url: str
    session_id: str | None = None
    payment_links: dict[str, Any] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class GatewayReference:
    gateway_transaction_id: str | None = None
    auth_code: str | None = None
    rrn: str | None = None


@dataclass
class OrderStatus:
    """Authoritative order state as reported by the status endpoint.

    Uses the status endpoint's own naming (``order_status``,
    ``transaction_id``); it is not the redirect/webhook field bag.
    """

    order_id: str
    order_status: str | None
    status: NormalizedStatus
    transaction_id: str | None = None
    status_id: str | None = None
    amount: str | None = None
    currency: str | None = None
    payment_method: str | None = None
    bank_ref_no: str | None = None
    customer_id: str | None = None
    merchant_id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    gateway_response: GatewayReference | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class RefundResult:
    order_id: str
    refund_amount: str
    refund_ref_no: str
    status: str | None
    refund_id: str | None = None
    created_at: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class SecurityEvent:
    """Append-only audit record keyed by order id."""

    event_type: str
    severity: Severity
    description: str
    order_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    vulnerability_type: str | None = None
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class TransactionRecord:
    """One gateway arrival as received, with its verification outcome."""

    order_id: str
    transaction_id: str | None
    status: str | None
    channel: str
    fields: dict[str, Any] = field(default_factory=dict)
    signature: str | None = None
    signature_verified: bool = False
    signature_algorithm: str = DEFAULT_SIGNATURE_ALGORITHM
    ip_address: str | None = None
    user_agent: str | None = None
    received_at: datetime = field(default_factory=_utcnow)


@dataclass
class StatusChange:
    order_id: str
    status: NormalizedStatus
    transaction_id: str | None
    source: str
    changed_at: datetime = field(default_factory=_utcnow)


@dataclass
class TrackedSession:
    """Current tracked state for one order."""

    order_id: str
    session: PaymentSession | None = None
    status: NormalizedStatus | None = None
    transaction_id: str | None = None
    session_id: str | None = None
    payment_link_web: str | None = None
    session_response: dict[str, Any] = field(default_factory=dict)
    updated_at: datetime | None = None


@dataclass
class AuditTrail:
    order_id: str
    session: TrackedSession | None = None
    transactions: list[TransactionRecord] = field(default_factory=list)
    status_history: list[StatusChange] = field(default_factory=list)
    security_events: list[SecurityEvent] = field(default_factory=list)
    refunds: list[RefundResult] = field(default_factory=list)
