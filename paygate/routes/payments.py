from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse

from paygate.dependencies import Gateway, get_gateway
from paygate.domain.dtos import (
    PaymentStatusBody,
    PaymentStatusResponse,
    RefundBody,
    RefundRequest,
    RefundResponse,
    SessionCreateRequest,
    SessionCreateResponse,
    StatusRequest,
)
from paygate.errors import (
    GatewayTransportError,
    MissingRedirectTarget,
    PaymentGatewayError,
    UpstreamHttpError,
)
from paygate.gateway.sessions import build_payment_session
from paygate.pages import render_error_page, render_redirect_page
from paygate.services.responses import RedirectDecision, RedirectOutcome, with_query
from paygate.utils.security import verify_bearer_token

router = APIRouter(prefix="/api/payment")
logger = logging.getLogger(__name__)


def _gateway_error(exc: PaymentGatewayError) -> HTTPException:
    if isinstance(exc, UpstreamHttpError):
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                "error": f"Gateway {exc.operation} failed",
                "upstream_status": exc.status_code,
                "body": exc.body,
            },
        )
    if isinstance(exc, GatewayTransportError):
        return HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail={"error": f"Gateway {exc.operation} unavailable"},
        )
    if isinstance(exc, MissingRedirectTarget):
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": "No redirect target in gateway response", "body": exc.body},
        )
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail={"error": str(exc)})


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("x-real-ip") or (request.client.host if request.client else None)


@router.post("/session", response_model=SessionCreateResponse)
def create_session(req: SessionCreateRequest, gateway: Gateway = Depends(get_gateway)) -> SessionCreateResponse:
    session = build_payment_session(
        amount=req.amount,
        customer_name=req.customer_name,
        customer_email=req.customer_email,
        customer_phone=req.customer_phone,
        description=req.description,
        return_url=gateway.config.return_url,
    )
    try:
        result = gateway.sessions.create_session(session)
    except PaymentGatewayError as exc:
        raise _gateway_error(exc) from exc
    return SessionCreateResponse(
        order_id=session.order_id,
        redirect_url=result.redirect_url,
        session_id=result.session_id,
        session=result.raw,
    )


def _status_response(gateway: Gateway, order_id: str) -> PaymentStatusResponse:
    try:
        order = gateway.status.get_status(order_id)
    except PaymentGatewayError as exc:
        raise _gateway_error(exc) from exc
    return PaymentStatusResponse(
        payment_status=PaymentStatusBody.from_order_status(order),
        gateway_response=order.raw,
    )


@router.get("/status", response_model=PaymentStatusResponse)
def get_status(
    order_id: str = Query(..., min_length=1),
    gateway: Gateway = Depends(get_gateway),
) -> PaymentStatusResponse:
    return _status_response(gateway, order_id)


@router.post("/status", response_model=PaymentStatusResponse)
def post_status(req: StatusRequest, gateway: Gateway = Depends(get_gateway)) -> PaymentStatusResponse:
    return _status_response(gateway, req.order_id)


@router.post("/refund", response_model=RefundResponse, dependencies=[Depends(verify_bearer_token)])
def refund_payment(req: RefundRequest, gateway: Gateway = Depends(get_gateway)) -> RefundResponse:
    try:
        result = gateway.refunds.refund(req.order_id, req.refund_amount, req.refund_note)
    except PaymentGatewayError as exc:
        raise _gateway_error(exc) from exc
    return RefundResponse(refund=RefundBody.from_result(result))


def _processing_error_url(gateway: Gateway) -> str:
    return with_query(gateway.config.redirects.error, {"message": "processing_error"})


def _error_page(decision: RedirectDecision) -> HTMLResponse:
    if decision.outcome is RedirectOutcome.SIGNATURE_ERROR:
        title, message = "Payment Security Error", "Payment verification failed."
    else:
        title, message = "Payment Error", "The payment response could not be processed."
    return HTMLResponse(render_error_page(decision.url, title, message), status_code=decision.http_status)


async def _handle_response(request: Request, gateway: Gateway, fields: dict[str, Any], channel: str) -> RedirectDecision:
    logger.info(
        "payment response received",
        extra={"endpoint": "/api/payment/response", "method": request.method, "order_id": str(fields.get("order_id") or "")},
    )
    return await asyncio.to_thread(
        gateway.responses.handle,
        fields,
        channel=channel,
        client_ip=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


@router.post("/response", response_class=HTMLResponse)
async def payment_response_post(request: Request, gateway: Gateway = Depends(get_gateway)) -> HTMLResponse:
    """Gateway POST return: answered with an HTML page, never a bare 3xx."""
    try:
        form = await request.form()
        fields = {key: str(value) for key, value in form.items()}
        decision = await _handle_response(request, gateway, fields, "redirect_post")
    except Exception:  # noqa: BLE001
        logger.exception("payment response processing error", extra={"endpoint": "/api/payment/response"})
        return HTMLResponse(
            render_error_page(
                _processing_error_url(gateway),
                "Payment Processing Error",
                "An error occurred while processing your payment.",
            ),
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    if decision.is_error:
        return _error_page(decision)
    return HTMLResponse(render_redirect_page(decision.url), status_code=status.HTTP_200_OK)


@router.get("/response")
async def payment_response_get(request: Request, gateway: Gateway = Depends(get_gateway)) -> RedirectResponse:
    try:
        fields = dict(request.query_params.items())
        decision = await _handle_response(request, gateway, fields, "redirect_get")
    except Exception:  # noqa: BLE001
        logger.exception("payment response processing error", extra={"endpoint": "/api/payment/response"})
        return RedirectResponse(_processing_error_url(gateway), status_code=status.HTTP_303_SEE_OTHER)
    return RedirectResponse(decision.url, status_code=status.HTTP_303_SEE_OTHER)
