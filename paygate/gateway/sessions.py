from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from paygate.config import GatewayConfig
from paygate.domain.models import PaymentSession, SessionResult
from paygate.domain.statuses import Severity
from paygate.errors import MissingRedirectTarget, PaymentGatewayError
from paygate.services.audit import AuditSink
from paygate.utils.formatting import format_amount, format_phone_number, parse_customer_name

from .client import GatewayHttpClient
from .ids import generate_customer_id, generate_order_id

logger = logging.getLogger(__name__)


def build_payment_session(
    *,
    amount: Any,
    customer_name: str,
    customer_email: str,
    customer_phone: str,
    return_url: str,
    description: str | None = None,
) -> PaymentSession:
    """Create a new session with fresh order and customer ids.

    Inputs are expected to be validated by the caller.
    """
    order_id = generate_order_id()
    first_name, last_name = parse_customer_name(customer_name)
    return PaymentSession(
        order_id=order_id,
        amount=format_amount(amount),
        customer_id=generate_customer_id(customer_email),
        customer_email=customer_email,
        customer_phone=format_phone_number(customer_phone),
        description=description or f"Payment for order {order_id}",
        return_url=return_url,
        first_name=first_name,
        last_name=last_name,
    )


def resolve_redirect_url(data: Mapping[str, Any], base_url: str) -> str | None:
    """Pick the payment page URL from a session response.

    Priority: ``redirect_url``, then ``payment_links.web``, then a URL built
    from ``session_id``.
    """
    redirect_url = data.get("redirect_url")
    if redirect_url:
        return str(redirect_url)
    links = data.get("payment_links")
    if isinstance(links, Mapping) and links.get("web"):
        return str(links["web"])
    session_id = data.get("session_id")
    if session_id:
        return f"{base_url.rstrip('/')}/pay/{session_id}"
    return None


class SessionClient:
    """Opens hosted payment sessions on the gateway."""

    def __init__(
        self,
        config: GatewayConfig,
        audit: AuditSink,
        http: GatewayHttpClient | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.config = config
        self.audit = audit
        self.http = http or GatewayHttpClient(config, transport=transport)

    def create_session(self, session: PaymentSession) -> SessionResult:
        payload = session.to_payload(self.config.client_id)
        logger.info(
            "creating payment session",
            extra={"order_id": session.order_id, "amount": session.amount},
        )
        self.audit.session_created(session)
        try:
            data = self.http.request(
                "create_session",
                "POST",
                "/session",
                headers=self.http.headers(customer_id=session.customer_id),
                json=payload,
            )
            redirect_url = resolve_redirect_url(data, self.config.base_url)
            if redirect_url is None:
                logger.error(
                    "session response has no redirect target",
                    extra={"order_id": session.order_id},
                )
                raise MissingRedirectTarget(session.order_id, data)
        except PaymentGatewayError as exc:
            self.audit.security_event(
                "session_creation_failure",
                Severity.MEDIUM,
                f"Failed to create payment session for order {session.order_id}",
                order_id=session.order_id,
                payload={"error": str(exc)},
            )
            raise

        self.audit.session_response(session.order_id, data)
        links = data.get("payment_links")
        result = SessionResult(
            order_id=str(data.get("order_id") or session.order_id),
            redirect_url=redirect_url,
            session_id=str(data["session_id"]) if data.get("session_id") else None,
            payment_links=dict(links) if isinstance(links, Mapping) else {},
            raw=data,
        )
        logger.info(
            "payment session created",
            extra={"order_id": result.order_id, "redirect_to": result.redirect_url},
        )
        return result
