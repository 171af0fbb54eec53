from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from paygate.dependencies import Gateway, get_gateway
from paygate.domain.dtos import WebhookAck
from paygate.errors import InvalidGatewayEvent, SignatureMismatch

router = APIRouter(prefix="/api")
logger = logging.getLogger(__name__)


def _reply(status_code: int, ack: WebhookAck) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ack.model_dump())


@router.post("/webhook", response_model=WebhookAck)
async def gateway_webhook(request: Request, gateway: Gateway = Depends(get_gateway)) -> JSONResponse:
    try:
        # Numbers keep their wire text; the signature covers it verbatim.
        payload = json.loads(await request.body(), parse_float=str, parse_int=str)
    except ValueError:
        logger.warning("webhook body is not JSON", extra={"endpoint": "/api/webhook"})
        return _reply(status.HTTP_400_BAD_REQUEST, WebhookAck(status="error", message="Invalid JSON"))
    if not isinstance(payload, dict):
        return _reply(status.HTTP_400_BAD_REQUEST, WebhookAck(status="error", message="Invalid payload"))

    try:
        outcome = await asyncio.to_thread(gateway.webhooks.process, payload)
    except SignatureMismatch as exc:
        logger.error(
            "invalid webhook signature",
            extra={"endpoint": "/api/webhook", "order_id": exc.order_id or ""},
        )
        return _reply(status.HTTP_400_BAD_REQUEST, WebhookAck(status="error", message="Invalid signature"))
    except InvalidGatewayEvent as exc:
        logger.warning("invalid webhook payload", extra={"endpoint": "/api/webhook", "error": str(exc)})
        return _reply(status.HTTP_400_BAD_REQUEST, WebhookAck(status="error", message=str(exc)))
    logger.info(
        "webhook acknowledged",
        extra={
            "endpoint": "/api/webhook",
            "order_id": outcome.order_id,
            "event_type": outcome.event_type,
        },
    )
    return _reply(status.HTTP_200_OK, WebhookAck(status="success", message="Webhook processed successfully"))
