"""
Centralized Exception Handling for sastabazar

This module provides:
- Custom exception classes for the payment order lifecycle
- Standardized error response format
- Exception handlers for FastAPI
"""

from datetime import datetime
import logging
from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

# =============================================================================
# Module Exports
# =============================================================================
__all__ = [
    # Base exception
    "SastabazarException",
    # Request problems
    "ValidationError",
    "SignatureError",
    "InvalidSignatureError",
    "AuthenticationError",
    "AuthorizationError",
    # Resources
    "NotFoundError",
    "OrderNotFoundError",
    "ConflictError",
    # Checkout
    "EmptyCartError",
    "InventoryError",
    "ProductUnavailableError",
    # Upstream / infrastructure
    "GatewayError",
    "RefundError",
    "DatabaseError",
    "ConfigurationError",
    # Response helpers
    "create_error_response",
    "sastabazar_exception_handler",
]


class SastabazarException(Exception):
    """Base exception for the sastabazar payments service"""

    def __init__(self, message: str, error_code: str = "INTERNAL_ERROR", details: Dict[str, Any] = None, status_code: int = 500):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.status_code = status_code
        self.headers: Optional[Dict[str, str]] = None
        super().__init__(self.message)


class ValidationError(SastabazarException):
    """Malformed or missing request fields"""

    def __init__(self, message: str = "Validation failed", details: Dict[str, Any] = None):
        super().__init__(message, "VALIDATION_ERROR", details, 400)


class SignatureError(SastabazarException):
    """
    Cryptographic verification of a gateway confirmation failed.

    Always a 400: the data came from the client or the gateway, not from us.
    """

    def __init__(self, message: str = "Invalid signature", details: Dict[str, Any] = None):
        super().__init__(message, "INVALID_SIGNATURE", details, 400)


InvalidSignatureError = SignatureError


class AuthenticationError(SastabazarException):
    """Missing, invalid or expired bearer token"""

    def __init__(self, message: str = "Authentication required", details: Dict[str, Any] = None):
        super().__init__(message, "AUTH_ERROR", details, 401)
        self.headers = {"WWW-Authenticate": "Bearer"}


class AuthorizationError(SastabazarException):
    """Authenticated caller lacks the required role"""

    def __init__(self, message: str = "Access denied", details: Dict[str, Any] = None):
        super().__init__(message, "AUTHZ_ERROR", details, 403)


class NotFoundError(SastabazarException):
    """Resource not found error"""

    def __init__(self, message: str = "Resource not found", details: Dict[str, Any] = None):
        super().__init__(message, "NOT_FOUND", details, 404)


class OrderNotFoundError(NotFoundError):
    """Order not found error"""

    def __init__(self, order_id: str, details: Dict[str, Any] = None):
        super().__init__("Order not found", {**(details or {}), "order_id": order_id})
        self.error_code = "ORDER_NOT_FOUND"


class ConflictError(SastabazarException):
    """The order is in a state that does not allow the requested transition"""

    def __init__(self, message: str = "Resource conflict", details: Dict[str, Any] = None):
        super().__init__(message, "CONFLICT", details, 409)


class EmptyCartError(SastabazarException):
    """Checkout attempted with an empty cart"""

    def __init__(self, message: str = "Cart is empty.", details: Dict[str, Any] = None):
        super().__init__(message, "EMPTY_CART", details, 400)


class InventoryError(SastabazarException):
    """Stock related errors at order-creation time"""

    def __init__(self, message: str = "Insufficient stock", error_code: str = "INVENTORY_ERROR",
                 details: Dict[str, Any] = None):
        super().__init__(message, error_code, details, 409)


class ProductUnavailableError(InventoryError):
    """A cart line references an inactive, missing or under-stocked product"""

    def __init__(self, product_id: str, product_name: Optional[str] = None, reason: str = "unavailable",
                 details: Dict[str, Any] = None):
        label = product_name or product_id
        super().__init__(
            f"Product '{label}' is {reason}",
            "PRODUCT_UNAVAILABLE",
            {**(details or {}), "product_id": product_id, "reason": reason},
        )
        self.product_id = product_id


class GatewayError(SastabazarException):
    """Upstream payment provider failure (network, timeout or rejection)"""

    def __init__(self, message: str = "Payment gateway error", details: Dict[str, Any] = None):
        super().__init__(message, "GATEWAY_ERROR", details, 502)


class RefundError(GatewayError):
    """The payment provider refused or failed to create a refund"""

    def __init__(self, message: str = "Refund failed", details: Dict[str, Any] = None):
        super().__init__(message, details)
        self.error_code = "REFUND_ERROR"


class DatabaseError(SastabazarException):
    """Database operation error"""

    def __init__(self, message: str = "Database operation failed", details: Dict[str, Any] = None):
        super().__init__(message, "DATABASE_ERROR", details, 500)


class ConfigurationError(SastabazarException):
    """Missing or invalid configuration"""

    def __init__(self, message: str = "Invalid configuration", details: Dict[str, Any] = None):
        super().__init__(message, "CONFIGURATION_ERROR", details, 500)


def create_error_response(error: SastabazarException, status_code: Optional[int] = None) -> JSONResponse:
    """Create standardized error response"""

    if status_code is None:
        status_code = error.status_code

    error_response = {
        "success": False,
        "error": error.message,
        "error_code": error.error_code,
        "details": error.details,
        "timestamp": datetime.utcnow().isoformat(),
    }

    log = logger.error if status_code >= 500 else logger.warning
    log(f"sastabazar error: {error.error_code} - {error.message}", extra={
        "error_code": error.error_code,
        "status_code": status_code,
        "details": error.details,
    })

    return JSONResponse(status_code=status_code, content=error_response, headers=error.headers)


async def sastabazar_exception_handler(request, exc: SastabazarException) -> JSONResponse:
    """Global exception handler for sastabazar exceptions"""
    return create_error_response(exc)
