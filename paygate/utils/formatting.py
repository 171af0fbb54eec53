from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

MONEY_QUANT = Decimal("0.01")

_PHONE_RE = re.compile(r"^(\+91[-\s]?)?[6-9]\d{9}$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_SEPARATORS_RE = re.compile(r"[\s-]")


def format_amount(value: Any) -> str:
    """Serialize an amount with exactly two decimals (half-up rounding).

    Floats go through ``str`` first so ``10.005`` rounds to ``"10.01"``
    instead of inheriting the binary representation error.
    """
    if isinstance(value, bool):
        raise ValueError("Invalid monetary amount")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValueError("Invalid monetary amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid monetary amount")
    return format(amount.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP), "f")


def validate_phone_number(phone: str) -> bool:
    """Indian mobile number, optionally prefixed with +91."""
    return bool(_PHONE_RE.match(_SEPARATORS_RE.sub("", phone or "")))


def format_phone_number(phone: str) -> str:
    """Normalize a valid mobile number to ``+91 XXXXXXXXXX``.

    Input that is not a valid number is returned unchanged.
    """
    cleaned = _SEPARATORS_RE.sub("", phone or "")
    if not _PHONE_RE.match(cleaned):
        return phone
    return f"+91 {cleaned[-10:]}"


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email or ""))


def parse_customer_name(full_name: str) -> tuple[str, str]:
    """Split a full name into (first, last).

    A single-word name is used for both parts since the gateway expects a
    non-empty last name.
    """
    parts = (full_name or "").split()
    if not parts:
        return "", ""
    first = parts[0]
    last = " ".join(parts[1:]) or first
    return first, last
