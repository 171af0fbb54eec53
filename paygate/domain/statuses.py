from __future__ import annotations

from enum import Enum
from typing import Any


class NormalizedStatus(str, Enum):
    """Order status after normalizing the gateway's raw status token."""

    CHARGED = "charged"
    FAILED = "failed"
    PENDING = "pending"
    DECLINED = "declined"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    UNKNOWN = "unknown"

    @classmethod
    def from_raw(cls, value: Any) -> "NormalizedStatus":
        """Map a raw status token, ignoring case. Unmapped tokens become UNKNOWN."""
        if value is None:
            return cls.UNKNOWN
        token = str(value).strip().lower()
        try:
            return cls(token)
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_terminal(self) -> bool:
        return self not in {NormalizedStatus.PENDING, NormalizedStatus.UNKNOWN}


class WebhookEventType(str, Enum):
    """Webhook event types the processor acts on."""

    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"
    REFUNDED = "refunded"

    @property
    def target_status(self) -> NormalizedStatus:
        mapping = {
            WebhookEventType.SUCCESS: NormalizedStatus.CHARGED,
            WebhookEventType.FAILED: NormalizedStatus.FAILED,
            WebhookEventType.PENDING: NormalizedStatus.PENDING,
            WebhookEventType.REFUNDED: NormalizedStatus.REFUNDED,
        }
        return mapping[self]


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
