from __future__ import annotations

import logging
from typing import Any, Mapping
from urllib.parse import quote

import httpx

from paygate.config import GatewayConfig
from paygate.domain.models import GatewayReference, OrderStatus
from paygate.domain.statuses import NormalizedStatus

from .client import GatewayHttpClient
from .ids import generate_customer_id

logger = logging.getLogger(__name__)

STATUS_API_VERSION = "2023-06-30"


def _text(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def parse_order_status(order_id: str, data: Mapping[str, Any]) -> OrderStatus:
    """Map a status endpoint body onto :class:`OrderStatus`.

    The endpoint names its fields ``order_status`` and ``transaction_id``;
    redirect/webhook aliases are deliberately not consulted here.
    """
    reference = data.get("gateway_response")
    gateway_response = None
    if isinstance(reference, Mapping):
        gateway_response = GatewayReference(
            gateway_transaction_id=_text(reference.get("gateway_transaction_id")),
            auth_code=_text(reference.get("auth_code")),
            rrn=_text(reference.get("rrn")),
        )
    raw_status = _text(data.get("order_status"))
    return OrderStatus(
        order_id=_text(data.get("order_id")) or order_id,
        order_status=raw_status,
        status=NormalizedStatus.from_raw(raw_status),
        transaction_id=_text(data.get("transaction_id")),
        status_id=_text(data.get("status_id")),
        amount=_text(data.get("amount")),
        currency=_text(data.get("currency")),
        payment_method=_text(data.get("payment_method")),
        bank_ref_no=_text(data.get("bank_ref_no")),
        customer_id=_text(data.get("customer_id")),
        merchant_id=_text(data.get("merchant_id")),
        created_at=_text(data.get("created_at")),
        updated_at=_text(data.get("updated_at")),
        gateway_response=gateway_response,
        raw=dict(data),
    )


class StatusClient:
    """Polls the gateway for the authoritative order status."""

    def __init__(
        self,
        config: GatewayConfig,
        http: GatewayHttpClient | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.config = config
        self.http = http or GatewayHttpClient(config, transport=transport)

    def get_status(self, order_id: str) -> OrderStatus:
        if not order_id:
            raise ValueError("order_id is required")
        headers = self.http.headers(
            customer_id=generate_customer_id(order_id),
            version=STATUS_API_VERSION,
        )
        data = self.http.request(
            "order_status",
            "GET",
            f"/orders/{quote(order_id, safe='')}",
            headers=headers,
        )
        result = parse_order_status(order_id, data)
        logger.info(
            "order status fetched",
            extra={
                "order_id": result.order_id,
                "status": result.order_status or "",
                "transaction_id": result.transaction_id or "",
            },
        )
        return result
