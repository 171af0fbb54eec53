from __future__ import annotations

import base64
import logging
import time
from typing import Any, Dict

import httpx

from paygate.config import GatewayConfig
from paygate.errors import GatewayTransportError, UpstreamHttpError

logger = logging.getLogger(__name__)


class GatewayHttpClient:
    """Blocking HTTPS access to the gateway API.

    Every call has the configured finite timeout and no retries; the
    human-facing flow is expected to retry.
    """

    def __init__(self, config: GatewayConfig, transport: httpx.BaseTransport | None = None):
        self.config = config
        self._client = httpx.Client(
            base_url=config.base_url,
            timeout=config.timeout,
            transport=transport,
        )

    def auth_header(self) -> str:
        credentials = base64.b64encode(f"{self.config.api_key}:".encode("utf-8")).decode("ascii")
        return f"Basic {credentials}"

    def headers(self, customer_id: str | None = None, **extra: str) -> Dict[str, str]:
        headers = {
            "Authorization": self.auth_header(),
            "Content-Type": "application/json",
            "x-merchantid": self.config.merchant_id,
        }
        if customer_id:
            headers["x-customerid"] = customer_id
        headers.update(extra)
        return headers

    @staticmethod
    def _mask_headers(headers: Dict[str, str]) -> Dict[str, str]:
        masked = dict(headers)
        if "Authorization" in masked:
            masked["Authorization"] = "Basic [REDACTED]"
        return masked

    def request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        headers: Dict[str, str],
        json: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        """Send one request and return the decoded JSON object.

        Raises UpstreamHttpError for non-2xx answers (raw body preserved) and
        GatewayTransportError when the gateway cannot be reached in time.
        """
        started = time.monotonic()
        try:
            resp = self._client.request(method, path, headers=headers, json=json)
        except httpx.HTTPError as exc:
            latency_ms = int((time.monotonic() - started) * 1000)
            logger.error(
                "gateway request failed",
                extra={
                    "operation": operation,
                    "method": method,
                    "endpoint": path,
                    "latency_ms": latency_ms,
                    "error": str(exc),
                },
            )
            raise GatewayTransportError(operation, exc) from exc
        latency_ms = int((time.monotonic() - started) * 1000)
        if not resp.is_success:
            logger.error(
                "gateway returned error",
                extra={
                    "operation": operation,
                    "method": method,
                    "endpoint": path,
                    "response_status": resp.status_code,
                    "latency_ms": latency_ms,
                    "headers": self._mask_headers(headers),
                    "error": resp.text,
                },
            )
            raise UpstreamHttpError(operation, resp.status_code, resp.text)
        try:
            data = resp.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            logger.error(
                "gateway returned non-object body",
                extra={"operation": operation, "endpoint": path, "response_status": resp.status_code},
            )
            raise UpstreamHttpError(operation, resp.status_code, resp.text)
        logger.info(
            "gateway call completed",
            extra={
                "operation": operation,
                "method": method,
                "endpoint": path,
                "response_status": resp.status_code,
                "latency_ms": latency_ms,
            },
        )
        return data

    def close(self) -> None:
        self._client.close()
