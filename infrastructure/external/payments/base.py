"""
Base payment client implementing shared concerns: http transport, timeouts, logging.

Concrete providers subclass and implement the wire format. The base never
retries: a card charge is only retried by the caller with the same order id.
"""
from __future__ import annotations

from typing import Any, Optional
from contextlib import asynccontextmanager

import httpx

from core.logging_config import get_logger
from domain.payment.exceptions import GatewayUnavailable, ProtocolError


logger = get_logger(__name__)


class BasePaymentClient:
    provider: str = "base"

    def __init__(
        self,
        *,
        timeouts: Optional[dict[str, float]] = None,
        auth: Optional[tuple[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeouts_cfg = timeouts or {"connect": 3.0, "read": 15.0, "write": 5.0, "total": 20.0}
        self._auth = auth
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self._timeouts_cfg["connect"],
            read=self._timeouts_cfg["read"],
            write=self._timeouts_cfg["write"],
            timeout=self._timeouts_cfg["total"],
        )

    @asynccontextmanager
    async def client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeouts, auth=self._auth, transport=self._transport)
        try:
            yield self._client
        finally:
            # Keep open for reuse; explicit aclose() will close.
            ...

    async def aclose(self) -> None:
        """Close underlying HTTP client if created."""
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def _post_form(self, url: str, fields: dict[str, str], *, operation: str) -> str:
        """POST a form body and return the response text.

        Transport failures and 5xx become GatewayUnavailable; any other
        non-2xx status is a ProtocolError.
        """
        try:
            async with self.client() as http:
                resp = await http.post(url, data=fields)
        except httpx.TimeoutException as exc:
            self._log("payment_gateway_timeout", operation=operation, error=str(exc), level="warning")
            raise GatewayUnavailable(details={"operation": operation, "reason": "timeout"}) from exc
        except httpx.TransportError as exc:
            self._log("payment_gateway_unreachable", operation=operation, error=str(exc), level="warning")
            raise GatewayUnavailable(details={"operation": operation, "reason": "transport"}) from exc

        if resp.status_code >= 500:
            self._log("payment_gateway_server_error", operation=operation, status_code=resp.status_code, level="warning")
            raise GatewayUnavailable(details={"operation": operation, "status_code": resp.status_code})
        if resp.status_code >= 400:
            self._log("payment_gateway_rejected_request", operation=operation, status_code=resp.status_code, level="error")
            raise ProtocolError(
                f"Payment gateway rejected the request with HTTP {resp.status_code}",
                details={"operation": operation, "status_code": resp.status_code},
            )
        return resp.text

    def _log(self, event: str, *, level: str = "info", **kwargs: Any) -> None:
        getattr(logger, level)(
            event,
            provider=self.provider,
            **kwargs,
        )
