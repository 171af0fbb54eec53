from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from paygate.dependencies import Gateway, get_gateway

router = APIRouter()

SERVICE_STARTED_AT = datetime.now(timezone.utc)


@router.get("/health")
async def health(gateway: Gateway = Depends(get_gateway)) -> dict[str, str]:
    """Simple health check endpoint for load balancers."""
    return {
        "status": "ok",
        "environment": gateway.config.environment,
        "tracker": gateway.tracker.name,
        "started_at": SERVICE_STARTED_AT.isoformat(),
    }
