from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.encoders import jsonable_encoder

from paygate.dependencies import Gateway, get_gateway
from paygate.utils.security import verify_bearer_token

router = APIRouter(prefix="/api/admin", dependencies=[Depends(verify_bearer_token)])


@router.get("/transactions/{order_id}")
def transaction_audit_trail(order_id: str, gateway: Gateway = Depends(get_gateway)) -> dict[str, Any]:
    """Session, gateway arrivals, status history, security events and refunds for one order."""
    trail = gateway.audit.audit_trail(order_id)
    if trail is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Transaction tracking unavailable")
    if trail.session is None and not trail.transactions and not trail.security_events:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return jsonable_encoder(asdict(trail))
