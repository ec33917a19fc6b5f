"""
Online payment exception hierarchy

Each error carries a message and an optional details dict that is dumped into
the payment log when the error is handled.
"""
from typing import Optional, Dict, Any


class PaymentError(Exception):
    """Base exception for all online payment errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to API error response format."""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "details": self.details
        }


class ConfigurationError(PaymentError):
    """
    Required gateway setting is missing or invalid.

    Examples:
    - merchantId / secret / url not configured for a source
    - Unknown handler name
    - Online payment not enabled for a source
    """


class GatewayRequestError(PaymentError):
    """
    Gateway rejected or failed the outbound payment request.

    Examples:
    - Transport exception or timeout
    - Non-success HTTP status
    - Acceptance response missing fields or carrying an invalid signature
    """


class GatewayStatusError(GatewayRequestError):
    """
    Gateway acceptance response reported a recognized failure status.

    Examples:
    - System error / invalid request
    - Duplicate order id
    - Order already processed or canceled
    """

    def __init__(self, message: str, status: Any = None, details: Optional[Dict[str, Any]] = None):
        self.status = status
        super().__init__(message, details)


class CallbackValidationError(PaymentError):
    """
    Gateway callback could not be trusted.

    Examples:
    - Required parameter missing or empty
    - Signature / hash mismatch
    - Request method not supported by the gateway
    """


class PersistenceError(PaymentError):
    """Transaction store failed to persist or update a record."""
