from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

import httpx

from paygate.config import GatewayConfig
from paygate.domain.models import RefundResult
from paygate.services.audit import AuditSink
from paygate.utils.formatting import format_amount

from .client import GatewayHttpClient
from .ids import generate_refund_ref_no

logger = logging.getLogger(__name__)


class RefundClient:
    """Issues refunds against the gateway's refund endpoint."""

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

    def refund(self, order_id: str, amount: Any, note: str | None = None) -> RefundResult:
        """Refund ``amount`` of ``order_id``; the gateway status is returned verbatim."""
        if not order_id:
            raise ValueError("order_id is required")
        refund_amount = format_amount(amount)
        if Decimal(refund_amount) <= 0:
            raise ValueError("Refund amount must be positive")
        refund_ref_no = generate_refund_ref_no()
        payload = {
            "order_id": order_id,
            "refund_amount": refund_amount,
            "refund_note": note or f"Refund for order {order_id}",
            "refund_ref_no": refund_ref_no,
            "merchant_id": self.config.merchant_id,
        }
        logger.info(
            "requesting refund",
            extra={"order_id": order_id, "amount": refund_amount, "refund_ref_no": refund_ref_no},
        )
        data = self.http.request("refund", "POST", "/refund", headers=self.http.headers(), json=payload)
        status = data.get("status")
        result = RefundResult(
            order_id=str(data.get("order_id") or order_id),
            refund_amount=str(data.get("refund_amount") or refund_amount),
            refund_ref_no=str(data.get("refund_ref_no") or refund_ref_no),
            status=str(status) if status is not None else None,
            refund_id=str(data["refund_id"]) if data.get("refund_id") else None,
            created_at=str(data["created_at"]) if data.get("created_at") else None,
            raw=data,
        )
        self.audit.refund(result)
        logger.info(
            "refund processed",
            extra={
                "order_id": result.order_id,
                "refund_ref_no": result.refund_ref_no,
                "status": result.status or "",
            },
        )
        return result
