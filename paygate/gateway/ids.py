"""Identifier generation for orders, customers and refunds.

Ids combine a millisecond timestamp with a small random suffix. They are
practically unique within one merchant, not cryptographically unique; the
customer id hash is for correlation only and never used for authentication.
"""
from __future__ import annotations

import hashlib
import secrets
import time


def _now_ms() -> int:
    return int(time.time() * 1000)


def _random_suffix() -> str:
    return f"{secrets.randbelow(1000):03d}"


def generate_order_id(now_ms: int | None = None) -> str:
    stamp = _now_ms() if now_ms is None else now_ms
    return f"ORD{stamp}{_random_suffix()}"


def generate_refund_ref_no(now_ms: int | None = None) -> str:
    stamp = _now_ms() if now_ms is None else now_ms
    return f"REF{stamp}{_random_suffix()}"


def generate_customer_id(stable_identifier: str, now_ms: int | None = None) -> str:
    stamp = _now_ms() if now_ms is None else now_ms
    digest = hashlib.md5(stable_identifier.encode("utf-8"), usedforsecurity=False).hexdigest()
    return f"CUST{digest[:8]}{stamp}"
