from __future__ import annotations


class PaymentGatewayError(Exception):
    """Base class for gateway integration errors."""


class ConfigurationError(PaymentGatewayError):
    """Required secret or merchant setting is missing or invalid."""


class UpstreamHttpError(PaymentGatewayError):
    """The gateway answered with a non-2xx status.

    ``body`` keeps the raw response text for diagnostics.
    """

    def __init__(self, operation: str, status_code: int, body: str):
        self.operation = operation
        self.status_code = status_code
        self.body = body
        super().__init__(f"Gateway {operation} failed ({status_code}): {body}")


class GatewayTransportError(PaymentGatewayError):
    """The gateway could not be reached or did not answer in time."""

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Gateway {operation} request failed: {cause}")


class MissingRedirectTarget(PaymentGatewayError):
    """Session response carried no redirect_url, payment link or session id."""

    def __init__(self, order_id: str, body: object):
        self.order_id = order_id
        self.body = body
        super().__init__(f"No redirect target in session response for order {order_id}")


class SignatureMismatch(PaymentGatewayError):
    def __init__(self, order_id: str | None, received_signature: str | None):
        self.order_id = order_id
        self.received_signature = received_signature
        super().__init__(f"Signature verification failed for order {order_id}")


class InvalidGatewayEvent(PaymentGatewayError):
    """Inbound gateway payload cannot be processed (e.g. no order_id)."""


class AuditSinkError(PaymentGatewayError):
    """Writing to the transaction tracker or security log failed."""
