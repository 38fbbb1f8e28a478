"""
Logging utility functions and helpers.
"""

import logging
from typing import Any, Dict, Optional

from core.errors import AppError


SENSITIVE_FIELDS = {
    'token', 'secret', 'key', 'signature', 'cvc', 'cvv',
    'card_number', 'password', 'authorization'
}


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Usage:
        from utils.logger import get_logger
        logger = get_logger(__name__)
    """
    return logging.getLogger(name)


def sanitize_log_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Remove payment secrets from data before it is logged.

    Card tokens, acceptance tokens and signatures keep their first 8
    characters so a payment can still be traced; everything else that
    matches a sensitive field name is fully redacted.

    Args:
        data: Dictionary that may contain sensitive fields (gateway
            payloads, checkout requests)

    Returns:
        Sanitized copy safe for logging
    """
    sanitized = data.copy()

    for key, value in sanitized.items():
        lowered = key.lower()
        if any(sensitive in lowered for sensitive in SENSITIVE_FIELDS):
            if isinstance(value, str):
                if 'token' in lowered and len(value) > 8:
                    sanitized[key] = f"{value[:8]}..."
                else:
                    sanitized[key] = "***REDACTED***"
            elif isinstance(value, dict):
                sanitized[key] = sanitize_log_data(value)

        elif isinstance(value, dict):
            sanitized[key] = sanitize_log_data(value)

        elif isinstance(value, list):
            sanitized[key] = [
                sanitize_log_data(item) if isinstance(item, dict) else item
                for item in value
            ]

    return sanitized


def log_gateway_call(
    logger: logging.Logger,
    operation: str,
    status_code: Optional[int],
    duration_ms: float,
    extra: Optional[Dict[str, Any]] = None
):
    """
    Log one payment gateway HTTP call in a structured format.

    Args:
        logger: Logger instance
        operation: Gateway operation (acceptance_token, create_transaction, get_transaction)
        status_code: HTTP status code, None when the call never got a response
        duration_ms: Call duration in milliseconds
        extra: Additional context, sanitized before logging

    Usage:
        log_gateway_call(logger, "create_transaction", 201, 312.4, extra={"reference": ref})
    """
    log_data = {
        "gateway_operation": operation,
        "status_code": status_code,
        "duration_ms": round(duration_ms, 2),
    }

    if extra:
        log_data.update(sanitize_log_data(extra))

    if status_code is None or status_code >= 500:
        logger.error(f"Gateway {operation} - {status_code}", extra=log_data)
    elif status_code >= 400:
        logger.warning(f"Gateway {operation} - {status_code}", extra=log_data)
    else:
        logger.info(f"Gateway {operation} - {status_code}", extra=log_data)


def log_failure(logger: logging.Logger, message: str, error: AppError, **context):
    """Log a pipeline Failure; server errors at ERROR, expected failures at WARNING."""
    log_data = {"error_type": error.type, "error": error.message}
    log_data.update(sanitize_log_data(context))
    if "step" in error.details:
        log_data["step"] = error.details["step"]

    if error.http_status >= 500:
        logger.error(message, extra=log_data)
    else:
        logger.warning(message, extra=log_data)
