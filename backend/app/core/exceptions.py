"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict, Optional

logger = logging.getLogger("otp_numbers.errors")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ProviderError(AppException):
    """Raised when an upstream OTP vendor rejects a call (non-2xx response)."""

    def __init__(
        self,
        provider: str,
        upstream_status: int,
        vendor_message: str,
        details: Dict[str, Any] = None
    ):
        self.provider = provider
        self.upstream_status = upstream_status
        self.vendor_message = vendor_message
        # 5xx from the vendor may succeed after backoff, 4xx will not
        self.retryable = upstream_status >= 500
        super().__init__(
            message=f"{provider} rejected the request (HTTP {upstream_status}): {vendor_message}",
            error_code="ERR_PROVIDER_001",
            status_code=status.HTTP_502_BAD_GATEWAY,
            details={
                "provider": provider,
                "upstream_status": upstream_status,
                "vendor_message": vendor_message,
                "retryable": self.retryable,
                **(details or {})
            }
        )


class ProviderUnavailable(AppException):
    """Raised on network failures or timeouts talking to a vendor."""

    def __init__(self, provider: str, reason: str, details: Dict[str, Any] = None):
        self.provider = provider
        self.retryable = True
        super().__init__(
            message=f"{provider} is unavailable: {reason}",
            error_code="ERR_PROVIDER_002",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"provider": provider, "reason": reason, "retryable": True, **(details or {})}
        )


class UnsupportedProviderError(AppException):
    """Raised when a provider identifier has no integrated gateway."""

    def __init__(self, provider: str):
        self.provider = provider
        self.retryable = False
        super().__init__(
            message=f"Provider {provider} not supported",
            error_code="ERR_PROVIDER_003",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"provider": provider}
        )


class NotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class DuplicateOrderError(AppException):
    """Raised when an order id is already persisted."""

    def __init__(self, order_id: str):
        super().__init__(
            message=f"Order {order_id} already exists",
            error_code="ERR_ORDER_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"order_id": order_id}
        )


class OrderTerminalError(AppException):
    """Raised when a closed order (completed/cancelled/expired) is mutated."""

    def __init__(self, order_id: str, current_status: Optional[str] = None):
        message = f"Order {order_id} is closed"
        if current_status:
            message = f"Order {order_id} is already {current_status}"
        super().__init__(
            message=message,
            error_code="ERR_ORDER_002",
            status_code=status.HTTP_409_CONFLICT,
            details={"order_id": order_id, "status": current_status}
        )


class AccessDeniedError(AppException):
    """Raised when user doesn't own the resource they act on."""

    def __init__(self, message: str = "Access denied", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class InsufficientFundsError(AppException):
    """Raised when a debit would take a balance below zero."""

    def __init__(self, user_id: int, balance: Any, amount: Any):
        super().__init__(
            message=f"Insufficient balance: {balance} available, {amount} required",
            error_code="ERR_LEDGER_001",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details={"user_id": user_id, "balance": str(balance), "amount": str(amount)}
        )


class LedgerReferenceConflictError(AppException):
    """Raised when an idempotency reference is reused for a different mutation."""

    def __init__(self, reference: str, details: Dict[str, Any] = None):
        super().__init__(
            message=f"Ledger reference {reference} was already used for a different balance change",
            error_code="ERR_LEDGER_002",
            status_code=status.HTTP_409_CONFLICT,
            details={"reference": reference, **(details or {})}
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": jsonable_errors(exc)
            }
        }
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    # pydantic may put exception instances in "ctx"
    return [
        {key: value for key, value in error.items() if key != "ctx"}
        for error in exc.errors()
    ]


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
