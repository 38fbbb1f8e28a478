"""
Error taxonomy for the checkout pipelines.

Pipeline steps never raise these; they are carried inside a Failure
(see utils.result) and translated to HTTP responses by the routers.
"""

from typing import Any, Dict, Optional
from starlette import status


class AppError:
    """Base error carried by a Failure."""

    type: str = "app_error"
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {"type": self.type, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body

    def __eq__(self, other):
        return (
            type(self) is type(other)
            and self.message == other.message
            and self.details == other.details
        )

    def __repr__(self):
        return f"{type(self).__name__}({self.message!r}, details={self.details!r})"


class ValidationError(AppError):
    type = "validation_error"
    http_status = status.HTTP_400_BAD_REQUEST


class PriceMismatch(ValidationError):
    """The client-submitted amount disagrees with the server-computed total."""

    type = "price_mismatch"

    def __init__(self, provided: int, calculated: int):
        self.provided = provided
        self.calculated = calculated
        self.difference = abs(calculated - provided)
        super().__init__(
            "The provided amount does not match the calculated total",
            details={
                "provided": provided,
                "calculated": calculated,
                "difference": self.difference,
            },
        )


class NotFound(AppError):
    type = "not_found"
    http_status = status.HTTP_404_NOT_FOUND


class PaymentFailed(AppError):
    """The gateway explicitly rejected the charge."""

    type = "payment_failed"
    http_status = status.HTTP_402_PAYMENT_REQUIRED

    def __init__(self, gateway_error: Any, reference: Optional[str] = None):
        self.gateway_error = gateway_error
        self.reference = reference
        message = "Payment was rejected by the gateway"
        if isinstance(gateway_error, dict):
            reason = gateway_error.get("reason") or gateway_error.get("message")
            if isinstance(reason, str) and reason:
                message = reason
        details = {"gateway_error": gateway_error}
        if reference:
            details["reference"] = reference
        super().__init__(message, details=details)


class ServerError(AppError):
    """Persistence failure or unexpected gateway response, tagged with the failing step."""

    type = "server_error"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, step: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.step = step
        merged = {"step": step}
        merged.update(details or {})
        super().__init__(message, details=merged)


class GatewayUnavailable(ServerError):
    """Timeout or transport failure talking to the gateway. Never a decline."""

    type = "gateway_unavailable"
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE
