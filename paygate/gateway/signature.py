"""HMAC-SHA256 signing and verification of gateway responses.

Canonical form: drop ``signature`` and ``signature_algorithm``, sort the
remaining keys by code point, join ``key=value`` pairs with ``&`` and
percent-encode the joined string once, as a whole. The signature is the
base64 HMAC-SHA256 digest of that string, percent-encoded again.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import json
from typing import Any, Iterable, Mapping
from urllib.parse import quote, unquote

from paygate.errors import ConfigurationError

RESERVED_KEYS = ("signature", "signature_algorithm")

# Characters left alone by JavaScript's encodeURIComponent
_URI_COMPONENT_SAFE = "-_.!~*'()"


def _encode_component(value: str) -> str:
    return quote(value, safe=_URI_COMPONENT_SAFE)


def _as_text(value: Any) -> str:
    # Numbers arrive as their wire text (see routes/webhook.py); only JSON
    # literals and nested values are rendered here.
    if isinstance(value, str):
        return value
    if value is None or isinstance(value, (bool, dict, list)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    return str(value)


def canonicalize(fields: Mapping[str, Any], exclude: Iterable[str] = RESERVED_KEYS) -> str:
    excluded = set(exclude)
    keys = sorted(key for key in fields if key not in excluded)
    joined = "&".join(f"{key}={_as_text(fields[key])}" for key in keys)
    return _encode_component(joined)


def _digest_b64(canonical: str, secret_key: str) -> str:
    mac = hmac.new(secret_key.encode("utf-8"), canonical.encode("utf-8"), hashlib.sha256)
    return base64.b64encode(mac.digest()).decode("ascii")


def compute_signature(canonical: str, secret_key: str) -> str:
    return _encode_component(_digest_b64(canonical, secret_key))


def _same(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def verify_signature(fields: Mapping[str, Any], secret_key: str) -> bool:
    """Return True when ``fields['signature']`` matches.

    The received signature is accepted either still percent-encoded or
    already decoded; the gateway delivers both forms depending on the
    channel.
    """
    received = fields.get("signature")
    if not received or not isinstance(received, str):
        return False
    expected_raw = _digest_b64(canonicalize(fields), secret_key)
    expected_encoded = _encode_component(expected_raw)
    if _same(received, expected_encoded):
        return True
    return _same(unquote(received), expected_raw)


class SignatureVerifier:
    """Signature operations bound to one response key."""

    def __init__(self, secret_key: str):
        if not secret_key:
            raise ConfigurationError("Gateway response key is required for signature verification")
        self._secret_key = secret_key

    def signature_for(self, fields: Mapping[str, Any]) -> str:
        return compute_signature(canonicalize(fields), self._secret_key)

    def sign(self, fields: Mapping[str, Any]) -> dict[str, Any]:
        """Return a copy of ``fields`` carrying its signature."""
        signed = {k: v for k, v in fields.items() if k not in RESERVED_KEYS}
        signed["signature"] = self.signature_for(signed)
        signed["signature_algorithm"] = "HMAC-SHA256"
        return signed

    def verify(self, fields: Mapping[str, Any]) -> bool:
        return verify_signature(fields, self._secret_key)
