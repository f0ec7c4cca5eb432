"""
Payment gateway HTTP client (PortOne / iamport REST API).

Only transport concerns live here: URL building, credentials, headers and
mapping failures onto ``GatewayTransportError`` (retryable) or
``GatewayApplicationError`` (the gateway said no). Retry and recovery are the
caller's job, see ``services.gateway_retry``.
"""
import asyncio
import enum
from typing import Any, Dict, Optional

import aiohttp
from pydantic import ValidationError

from settlement_system.config import GATEWAY_SETTINGS
from settlement_system.exceptions import GatewayApplicationError, GatewayTransportError
from settlement_system.models.schemas.gateway import AccessTokenPayload, CancelledPayment, GatewayEnvelope
from settlement_system.utils import get_logger

logger = get_logger(__name__)

# Gateway overloaded / unreachable upstream: worth another attempt
TRANSIENT_STATUS_CODES = {502, 503, 504}


class GatewayPath(str, enum.Enum):
    ACCESS_TOKEN = "/users/getToken"
    CANCEL_PAYMENT = "/payments/cancel"
    PREPARE_PAYMENT = "/payments/prepare"


class PaymentGatewayClient:
    """Async client for the payment gateway."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        imp_key: Optional[str] = None,
        imp_secret: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.base_url = str(base_url or GATEWAY_SETTINGS["base_url"]).rstrip("/")
        self._imp_key = imp_key or GATEWAY_SETTINGS.get("imp_key")
        self._imp_secret = imp_secret or GATEWAY_SETTINGS.get("imp_secret")
        self._timeout = aiohttp.ClientTimeout(total=float(timeout_seconds or GATEWAY_SETTINGS["timeout_seconds"]))  # type: ignore[arg-type]

    def _url(self, path: GatewayPath) -> str:
        return f"{self.base_url}{path.value}"

    async def _post_json(self, path: GatewayPath, body: Dict[str, Any], token: Optional[str] = None) -> GatewayEnvelope:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        url = self._url(path)
        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.post(url, json=body, headers=headers) as response:
                    if response.status in TRANSIENT_STATUS_CODES:
                        raise GatewayTransportError(f"Gateway unavailable ({response.status}) for {path.name}")
                    try:
                        payload = await response.json(content_type=None)
                    except ValueError as e:
                        # HTML error pages from proxies, truncated bodies
                        if response.status >= 400:
                            raise GatewayApplicationError(
                                f"Gateway rejected {path.name} with HTTP {response.status} (non-JSON body)",
                                status_code=response.status,
                            ) from e
                        raise GatewayApplicationError(
                            f"Malformed gateway response for {path.name}",
                            status_code=response.status,
                        ) from e
                    if response.status >= 400:
                        raise GatewayApplicationError(
                            f"Gateway rejected {path.name} with HTTP {response.status}",
                            status_code=response.status,
                            payload=payload,
                        )
        except (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError, asyncio.TimeoutError) as e:
            logger.warning("Gateway transport error", path=path.value, error=str(e), error_type=type(e).__name__)
            raise GatewayTransportError(f"{path.name} transport failure: {e}") from e

        try:
            envelope = GatewayEnvelope.model_validate(payload)
        except ValidationError as e:
            raise GatewayApplicationError(f"Malformed gateway response for {path.name}", payload=payload) from e
        if envelope.code != 0:
            raise GatewayApplicationError(
                envelope.message or f"Gateway returned code {envelope.code} for {path.name}",
                status_code=200,
                payload=payload,
            )
        return envelope

    async def get_access_token(self) -> str:
        if not self._imp_key or not self._imp_secret:
            raise GatewayApplicationError("Gateway credentials are not configured")
        envelope = await self._post_json(
            GatewayPath.ACCESS_TOKEN,
            {"imp_key": self._imp_key, "imp_secret": self._imp_secret},
        )
        try:
            return AccessTokenPayload.model_validate(envelope.response or {}).access_token
        except ValidationError as e:
            raise GatewayApplicationError("Access token missing from gateway response") from e

    async def cancel_payment(self, imp_uid: str) -> CancelledPayment:
        """Cancel a payment. A fresh token is fetched on every call (and every retry)."""
        token = await self.get_access_token()
        envelope = await self._post_json(GatewayPath.CANCEL_PAYMENT, {"imp_uid": imp_uid}, token=token)
        logger.info("Gateway cancellation accepted", imp_uid=imp_uid)
        return CancelledPayment.model_validate(envelope.response or {"imp_uid": imp_uid})

    async def create_payment(self, payment_request: Dict[str, Any], token: str) -> Dict[str, Any]:
        envelope = await self._post_json(GatewayPath.PREPARE_PAYMENT, payment_request, token=token)
        return envelope.response or {}


__all__ = ["PaymentGatewayClient", "GatewayPath", "TRANSIENT_STATUS_CODES"]
