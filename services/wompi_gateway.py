"""
Wompi payment gateway client.

One instance is built at startup (see main.lifespan) and injected into the
payment and reconciliation services; nothing here is a module-level
singleton. Every call carries a timeout. Timeouts and transport failures
are raised as GatewayTimeout / GatewayTransportError so callers can tell
"the gateway never answered" apart from "the gateway said no".
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

import httpx

from core.config import Settings
from utils.logger import get_logger, log_gateway_call
from utils.signatures import integrity_signature, verify_event_signature

logger = get_logger(__name__)


class GatewayTimeout(Exception):
    """The gateway did not answer within the configured timeout."""


class GatewayTransportError(Exception):
    """Connection-level failure talking to the gateway."""


@dataclass
class GatewayResponse:
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None


@dataclass
class ChargeRequest:
    acceptance_token: str
    amount_in_cents: int
    currency: str
    customer_email: str
    reference: str
    payment_method_type: str
    full_name: Optional[str] = None
    phone_number: Optional[str] = None
    payment_token: Optional[str] = None
    nequi_phone_number: Optional[str] = None
    installments: int = 1
    redirect_url: Optional[str] = None
    shipping_address: Optional[Dict[str, Any]] = field(default=None)

    def payment_method(self) -> Dict[str, Any]:
        method = {"type": self.payment_method_type}
        if self.payment_method_type == "CARD":
            method["token"] = self.payment_token
            method["installments"] = self.installments
        elif self.payment_method_type == "NEQUI":
            method["phone_number"] = self.nequi_phone_number
        return method

    def to_payload(self, integrity_key: str) -> Dict[str, Any]:
        payload = {
            "acceptance_token": self.acceptance_token,
            "amount_in_cents": self.amount_in_cents,
            "currency": self.currency,
            "customer_email": self.customer_email,
            "payment_method": self.payment_method(),
            "reference": self.reference,
            "customer_data": {
                "phone_number": self.phone_number,
                "full_name": self.full_name,
            },
            "signature": integrity_signature(
                self.reference, self.amount_in_cents, self.currency, integrity_key
            ),
        }
        if self.shipping_address:
            payload["shipping_address"] = self.shipping_address
        if self.redirect_url:
            payload["redirect_url"] = self.redirect_url
        return payload


class PaymentGateway(Protocol):
    async def get_acceptance_token(self) -> Optional[Dict[str, Any]]: ...

    async def create_transaction(self, charge: ChargeRequest) -> GatewayResponse: ...

    async def get_transaction(self, gateway_id: str) -> GatewayResponse: ...

    def validate_webhook_signature(self, payload: str, signature: Optional[str],
                                   timestamp: Optional[str]) -> bool: ...


class WompiGateway:

    def __init__(self, base_url: str, public_key: str, private_key: str,
                 integrity_key: str, events_key: str, timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.public_key = public_key
        self.integrity_key = integrity_key
        self.events_key = events_key
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout),
            headers={"Accept": "application/json"},
            transport=transport
        )
        self._auth_headers = {"Authorization": f"Bearer {private_key}"}

    @classmethod
    def from_settings(cls, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        return cls(
            base_url=settings.WOMPI_BASE_URL,
            public_key=settings.WOMPI_PUBLIC_KEY,
            private_key=settings.WOMPI_PRIVATE_KEY,
            integrity_key=settings.WOMPI_INTEGRITY_KEY,
            events_key=settings.WOMPI_EVENTS_KEY,
            timeout=settings.WOMPI_TIMEOUT_SECONDS,
            transport=transport
        )

    async def aclose(self):
        await self._client.aclose()

    async def get_acceptance_token(self) -> Optional[Dict[str, Any]]:
        """
        Fetch the merchant's presigned acceptance.

        Returns:
            {"acceptance_token": ..., "permalink": ..., "type": ...} or None
            when the gateway answered without one.
        """
        response = await self._request("acceptance_token", "GET", f"/merchants/{self.public_key}")
        if not response.success:
            return None

        acceptance = response.data.get("presigned_acceptance") if response.data else None
        if not isinstance(acceptance, dict) or not acceptance.get("acceptance_token"):
            logger.error("Acceptance token missing from merchant response")
            return None
        return acceptance

    async def create_transaction(self, charge: ChargeRequest) -> GatewayResponse:
        response = await self._request(
            "create_transaction", "POST", "/transactions",
            json=charge.to_payload(self.integrity_key),
            headers=self._auth_headers,
            log_context={"reference": charge.reference, "amount_in_cents": charge.amount_in_cents}
        )
        return self._require_transaction(response)

    async def get_transaction(self, gateway_id: str) -> GatewayResponse:
        response = await self._request(
            "get_transaction", "GET", f"/transactions/{gateway_id}",
            headers=self._auth_headers,
            log_context={"wompi_transaction_id": gateway_id}
        )
        return self._require_transaction(response)

    def validate_webhook_signature(self, payload: str, signature: Optional[str],
                                   timestamp: Optional[str]) -> bool:
        return verify_event_signature(payload, signature, timestamp, self.events_key)

    async def _request(self, operation: str, method: str, url: str,
                       log_context: Optional[Dict[str, Any]] = None, **kwargs) -> GatewayResponse:
        start = time.perf_counter()
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            log_gateway_call(logger, operation, None, (time.perf_counter() - start) * 1000,
                             extra={**(log_context or {}), "error": "timeout"})
            raise GatewayTimeout(f"{operation} timed out") from e
        except httpx.TransportError as e:
            log_gateway_call(logger, operation, None, (time.perf_counter() - start) * 1000,
                             extra={**(log_context or {}), "error": str(e)})
            raise GatewayTransportError(f"{operation} failed: {e}") from e

        log_gateway_call(logger, operation, response.status_code,
                         (time.perf_counter() - start) * 1000, extra=log_context)
        return self._parse_response(response)

    @staticmethod
    def _parse_response(response: httpx.Response) -> GatewayResponse:
        try:
            body = response.json()
        except ValueError:
            return GatewayResponse(
                success=False,
                error={"type": "parse_error", "message": "Failed to parse response"}
            )

        if not isinstance(body, dict):
            return GatewayResponse(
                success=False,
                error={"type": "malformed_response", "message": "Unexpected response body"}
            )

        if response.is_success:
            data = body.get("data")
            if not isinstance(data, dict):
                return GatewayResponse(
                    success=False,
                    error={"type": "malformed_response", "message": "Response has no data"}
                )
            return GatewayResponse(success=True, data=data)

        error = body.get("error")
        if not isinstance(error, dict):
            error = {"type": "unknown_error", "message": "Unknown error occurred"}
        error.setdefault("status_code", response.status_code)
        return GatewayResponse(success=False, error=error)

    @staticmethod
    def _require_transaction(response: GatewayResponse) -> GatewayResponse:
        # a 2xx without an id/status cannot be reconciled, so it is a failure
        if response.success and not (response.data.get("id") and response.data.get("status")):
            return GatewayResponse(
                success=False,
                error={"type": "malformed_response", "message": "Transaction id or status missing"}
            )
        return response
