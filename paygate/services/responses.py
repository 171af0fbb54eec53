from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from paygate.config import RedirectUrls
from paygate.domain.models import GatewayResponseEvent, TransactionRecord
from paygate.domain.statuses import NormalizedStatus, Severity
from paygate.errors import PaymentGatewayError
from paygate.gateway.signature import SignatureVerifier
from paygate.gateway.status import StatusClient
from paygate.services.audit import AuditSink

logger = logging.getLogger(__name__)


class RedirectOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"
    UNKNOWN = "unknown"
    SIGNATURE_ERROR = "signature_error"
    INVALID = "invalid"


@dataclass(frozen=True)
class RedirectDecision:
    outcome: RedirectOutcome
    url: str
    http_status: int
    order_id: str | None = None
    status: NormalizedStatus | None = None

    @property
    def is_error(self) -> bool:
        return self.outcome in {RedirectOutcome.SIGNATURE_ERROR, RedirectOutcome.INVALID}


def with_query(target: str, params: Mapping[str, str]) -> str:
    """Append ``params`` to ``target``, keeping any query it already has."""
    url = urlparse(target)
    q = dict(parse_qsl(url.query))
    q.update(params)
    return urlunparse((url.scheme, url.netloc, url.path, url.params, urlencode(q), url.fragment))


def decide_redirect(event: GatewayResponseEvent, signature_valid: bool, urls: RedirectUrls) -> RedirectDecision:
    """Pick the browser destination for a gateway callback.

    Shared by the GET and POST adapters; it performs no I/O.
    """
    if not event.order_id:
        return RedirectDecision(
            outcome=RedirectOutcome.INVALID,
            url=with_query(urls.error, {"message": "missing_order_id"}),
            http_status=400,
        )
    if not signature_valid:
        return RedirectDecision(
            outcome=RedirectOutcome.SIGNATURE_ERROR,
            url=with_query(urls.error, {"message": "signature_verification_failed"}),
            http_status=400,
            order_id=event.order_id,
        )

    status = event.status
    params = {"order_id": event.order_id, "transaction_id": event.transaction_id or ""}
    if status is NormalizedStatus.CHARGED:
        outcome, target = RedirectOutcome.SUCCESS, urls.success
        params["status"] = "success"
    elif status is NormalizedStatus.FAILED:
        outcome, target = RedirectOutcome.FAILED, urls.failure
        params["status"] = "failed"
        params["reason"] = event.failure_reason or "Payment failed"
    elif status is NormalizedStatus.PENDING:
        outcome, target = RedirectOutcome.PENDING, urls.pending
        params["status"] = "pending"
    else:
        outcome, target = RedirectOutcome.UNKNOWN, urls.error
        params["status"] = "unknown"
        params["message"] = f"Unknown payment status: {event.raw_status or ''}"
    return RedirectDecision(
        outcome=outcome,
        url=with_query(target, params),
        http_status=200,
        order_id=event.order_id,
        status=status,
    )


_BRANCH_EVENTS = {
    RedirectOutcome.SUCCESS: ("payment_success", Severity.LOW, "Payment completed successfully"),
    RedirectOutcome.FAILED: ("payment_failure", Severity.MEDIUM, "Payment failed"),
    RedirectOutcome.PENDING: ("payment_processing", Severity.LOW, "Payment processing initiated"),
    RedirectOutcome.UNKNOWN: ("unknown_payment_status", Severity.MEDIUM, "Unknown payment status received"),
}


class ResponseHandler:
    """Processes the browser redirect coming back from the gateway."""

    def __init__(
        self,
        verifier: SignatureVerifier,
        audit: AuditSink,
        urls: RedirectUrls,
        status_client: StatusClient | None = None,
    ):
        self.verifier = verifier
        self.audit = audit
        self.urls = urls
        self.status_client = status_client

    def handle(
        self,
        fields: Mapping[str, Any],
        *,
        channel: str = "redirect",
        client_ip: str | None = None,
        user_agent: str | None = None,
    ) -> RedirectDecision:
        event = GatewayResponseEvent.from_fields(fields)
        if not event.order_id:
            logger.warning("gateway response without order_id", extra={"method": channel})
            return decide_redirect(event, False, self.urls)

        signature_valid = self.verifier.verify(event.fields)
        self.audit.transaction_response(
            TransactionRecord(
                order_id=event.order_id,
                transaction_id=event.transaction_id,
                status=event.raw_status,
                channel=channel,
                fields=dict(event.fields),
                signature=event.signature,
                signature_verified=signature_valid,
                signature_algorithm=event.signature_algorithm,
                ip_address=client_ip,
                user_agent=user_agent,
            )
        )
        if not signature_valid:
            logger.error(
                "invalid gateway signature",
                extra={"order_id": event.order_id, "transaction_id": event.transaction_id or ""},
            )
            self.audit.security_event(
                "signature_verification_failure",
                Severity.HIGH,
                f"Signature verification failed for order {event.order_id}",
                order_id=event.order_id,
                vulnerability_type="signature_mismatch",
                payload={
                    "received_signature": event.signature,
                    "status": event.raw_status,
                    "transaction_id": event.transaction_id,
                    "ip_address": client_ip,
                    "user_agent": user_agent,
                },
            )
            return decide_redirect(event, False, self.urls)

        if event.raw_status is None and self.status_client is not None:
            event = self._corroborate(event)

        decision = decide_redirect(event, True, self.urls)
        self._record_branch(event, decision)
        logger.info(
            "gateway response processed",
            extra={
                "order_id": event.order_id,
                "transaction_id": event.transaction_id or "",
                "status": decision.outcome,
                "redirect_to": decision.url,
            },
        )
        return decision

    def _corroborate(self, event: GatewayResponseEvent) -> GatewayResponseEvent:
        """Fill a missing status from the status endpoint."""
        if not event.order_id or self.status_client is None:
            return event
        try:
            order = self.status_client.get_status(event.order_id)
        except PaymentGatewayError as exc:
            logger.warning(
                "status lookup failed; treating response as unknown",
                extra={"order_id": event.order_id, "error": str(exc)},
            )
            return event
        return dataclasses.replace(
            event,
            raw_status=order.order_status,
            transaction_id=event.transaction_id or order.transaction_id,
        )

    def _record_branch(self, event: GatewayResponseEvent, decision: RedirectDecision) -> None:
        order_id = event.order_id
        if not order_id:
            return
        event_type, severity, description = _BRANCH_EVENTS[decision.outcome]
        payload: dict[str, Any] = {
            "transaction_id": event.transaction_id,
            "status": event.raw_status,
        }
        if decision.outcome is RedirectOutcome.SUCCESS:
            payload.update(amount=event.amount, payment_method=event.payment_method)
        elif decision.outcome is RedirectOutcome.FAILED:
            payload.update(failure_reason=event.failure_reason, error_code=event.error_code)
        self.audit.security_event(
            event_type,
            severity,
            f"{description} for order {order_id}",
            order_id=order_id,
            payload=payload,
        )
        # Unmapped tokens are kept in the transaction record only so they do
        # not overwrite a known status.
        if event.status is not NormalizedStatus.UNKNOWN:
            self.audit.status_update(
                order_id,
                event.status,
                transaction_id=event.transaction_id,
                source="redirect",
            )
