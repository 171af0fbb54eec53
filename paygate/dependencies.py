from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx
from fastapi import Request

from paygate.config import GatewayConfig, Settings
from paygate.db.client import PgPool
from paygate.gateway.client import GatewayHttpClient
from paygate.gateway.refunds import RefundClient
from paygate.gateway.sessions import SessionClient
from paygate.gateway.signature import SignatureVerifier
from paygate.gateway.status import StatusClient
from paygate.repositories.base import TransactionTracker
from paygate.repositories.memory_store import InMemoryTransactionStore
from paygate.repositories.pg_store import PgTransactionStore
from paygate.services.audit import AuditSink
from paygate.services.notifications import Notifier
from paygate.services.responses import ResponseHandler
from paygate.services.webhooks import WebhookProcessor

logger = logging.getLogger(__name__)


@dataclass
class Gateway:
    """All gateway components for one application instance."""

    settings: Settings
    config: GatewayConfig
    tracker: TransactionTracker
    audit: AuditSink
    http: GatewayHttpClient
    sessions: SessionClient
    status: StatusClient
    refunds: RefundClient
    webhooks: WebhookProcessor
    responses: ResponseHandler

    def close(self) -> None:
        self.http.close()
        if isinstance(self.tracker, PgTransactionStore):
            self.tracker.pool.close()


def default_tracker(settings: Settings) -> TransactionTracker:
    if settings.db_enabled:
        return PgTransactionStore(PgPool(settings.db_dsn, settings.db_schema))
    logger.warning("database not configured; using in-memory transaction tracker")
    return InMemoryTransactionStore()


def build_gateway(
    settings: Settings,
    tracker: TransactionTracker | None = None,
    transport: httpx.BaseTransport | None = None,
    notifier: Notifier | None = None,
) -> Gateway:
    """Assemble the components; raises ConfigurationError on missing secrets."""
    config = GatewayConfig.from_settings(settings)
    verifier = SignatureVerifier(config.response_key)
    if tracker is None:
        tracker = default_tracker(settings)
    audit = AuditSink(tracker)
    http = GatewayHttpClient(config, transport=transport)
    status_client = StatusClient(config, http=http)
    return Gateway(
        settings=settings,
        config=config,
        tracker=tracker,
        audit=audit,
        http=http,
        sessions=SessionClient(config, audit, http=http),
        status=status_client,
        refunds=RefundClient(config, audit, http=http),
        webhooks=WebhookProcessor(verifier, audit, notifier=notifier),
        responses=ResponseHandler(verifier, audit, config.redirects, status_client=status_client),
    )


def get_gateway(request: Request) -> Gateway:
    return request.app.state.gateway
