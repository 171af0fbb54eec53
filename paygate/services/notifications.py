from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from paygate.domain.models import WebhookEvent

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Outbound hook for payment outcomes (emails, fulfilment, notification center)."""

    @abstractmethod
    def notify(self, order_id: str, outcome: str, event: WebhookEvent) -> None:
        """Announce that ``order_id`` reached ``outcome``."""


class LoggingNotifier(Notifier):
    """Default notifier: records the outcome in the application log only."""

    def notify(self, order_id: str, outcome: str, event: WebhookEvent) -> None:
        logger.info(
            "payment outcome notification",
            extra={
                "order_id": order_id,
                "status": outcome,
                "event_type": event.event_type,
                "transaction_id": event.transaction_id or "",
            },
        )
