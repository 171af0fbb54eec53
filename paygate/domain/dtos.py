from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict

from pydantic import AliasChoices, BaseModel, Field, field_validator

from paygate.domain.models import OrderStatus, RefundResult
from paygate.domain.statuses import NormalizedStatus
from paygate.utils.formatting import is_valid_email, validate_phone_number


class SessionCreateRequest(BaseModel):
    """Request body for opening a payment session.

    Accepts both snake_case and the camelCase names used by the checkout page.
    """

    amount: Decimal = Field(..., gt=0, description="Amount in INR")
    customer_name: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("customer_name", "customerName")
    )
    customer_email: str = Field(..., validation_alias=AliasChoices("customer_email", "customerEmail"))
    customer_phone: str = Field(..., validation_alias=AliasChoices("customer_phone", "customerPhone"))
    description: str | None = None

    @field_validator("customer_email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        if not is_valid_email(value):
            raise ValueError("Invalid email format")
        return value

    @field_validator("customer_phone")
    @classmethod
    def _check_phone(cls, value: str) -> str:
        if not validate_phone_number(value):
            raise ValueError("Invalid phone number. Must be a valid Indian mobile number")
        return value


class SessionCreateResponse(BaseModel):
    success: bool = True
    order_id: str
    redirect_url: str
    session_id: str | None = None
    session: Dict[str, Any] = Field(default_factory=dict, description="Raw gateway session response")


class StatusRequest(BaseModel):
    order_id: str = Field(..., min_length=1)


class PaymentStatusBody(BaseModel):
    """Order status in the shape the front end expects (``status`` = ``order_status``)."""

    order_id: str
    status: str | None = None
    normalized_status: NormalizedStatus
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
    gateway_response: Dict[str, Any] | None = None

    @classmethod
    def from_order_status(cls, order: OrderStatus) -> "PaymentStatusBody":
        reference = order.gateway_response
        return cls(
            order_id=order.order_id,
            status=order.order_status,
            normalized_status=order.status,
            transaction_id=order.transaction_id,
            status_id=order.status_id,
            amount=order.amount,
            currency=order.currency,
            payment_method=order.payment_method,
            bank_ref_no=order.bank_ref_no,
            customer_id=order.customer_id,
            merchant_id=order.merchant_id,
            created_at=order.created_at,
            updated_at=order.updated_at,
            gateway_response=(
                {
                    "gateway_transaction_id": reference.gateway_transaction_id,
                    "auth_code": reference.auth_code,
                    "rrn": reference.rrn,
                }
                if reference
                else None
            ),
        )


class PaymentStatusResponse(BaseModel):
    success: bool = True
    payment_status: PaymentStatusBody
    gateway_response: Dict[str, Any] = Field(default_factory=dict)


class RefundRequest(BaseModel):
    order_id: str = Field(..., min_length=1)
    refund_amount: Decimal = Field(..., gt=0)
    refund_note: str | None = None


class RefundBody(BaseModel):
    order_id: str
    refund_amount: str
    refund_ref_no: str
    status: str | None = None
    refund_id: str | None = None
    created_at: str | None = None

    @classmethod
    def from_result(cls, result: RefundResult) -> "RefundBody":
        return cls(
            order_id=result.order_id,
            refund_amount=result.refund_amount,
            refund_ref_no=result.refund_ref_no,
            status=result.status,
            refund_id=result.refund_id,
            created_at=result.created_at,
        )


class RefundResponse(BaseModel):
    success: bool = True
    refund: RefundBody
    message: str = "Refund processed successfully"


class WebhookAck(BaseModel):
    status: str
    message: str
