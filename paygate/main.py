from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from paygate.config import Settings
from paygate.dependencies import build_gateway
from paygate.logging import setup_logging
from paygate.repositories.base import TransactionTracker
from paygate.routes import admin, health, payments, webhook
from paygate.services.notifications import Notifier


def create_app(
    settings: Settings | None = None,
    tracker: TransactionTracker | None = None,
    transport: httpx.BaseTransport | None = None,
    notifier: Notifier | None = None,
) -> FastAPI:
    """Build the API. Run with ``uvicorn --factory paygate.main:create_app``.

    Missing gateway secrets raise ConfigurationError here, before serving.
    """
    setup_logging()
    gateway = build_gateway(settings or Settings(), tracker=tracker, transport=transport, notifier=notifier)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        gateway.close()

    app = FastAPI(title="Paygate", lifespan=lifespan)
    app.state.gateway = gateway
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(health.router)
    app.include_router(payments.router)
    app.include_router(webhook.router)
    app.include_router(admin.router)
    return app
