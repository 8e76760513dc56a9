"""
Custom exceptions and error handlers for consistent error responses.

Provides the settlement error taxonomy, standardized error codes and
global exception handlers.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from typing import Any, Dict, Optional

logger = logging.getLogger("glassbox")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ValidationError(AppException):
    """Raised when a fee schema submission violates an allocation rule."""

    AMOUNT_OUT_OF_RANGE = "AMOUNT_OUT_OF_RANGE"
    DUPLICATE_ACTIVE_ENTITY = "DUPLICATE_ACTIVE_ENTITY"
    TOTAL_EXCEEDS_LIMIT = "TOTAL_EXCEEDS_LIMIT"
    INVALID_EFFECTIVE_DATE = "INVALID_EFFECTIVE_DATE"

    def __init__(self, message: str, violation: str, details: Dict[str, Any] = None):
        self.violation = violation
        super().__init__(
            message=message,
            error_code="ERR_FEE_VALIDATION",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"violation": violation, **(details or {})}
        )


class SchemaNotFoundError(AppException):
    """Raised when a merchant has no active fee schema to allocate against."""

    def __init__(self, merchant_id: Optional[str]):
        self.merchant_id = merchant_id
        super().__init__(
            message=f"No active fee schema for merchant {merchant_id}",
            error_code="ERR_SCHEMA_NOT_FOUND",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"merchant_id": merchant_id}
        )


class CurrencyMismatchError(AppException):
    """Raised when a single-currency rollup is requested over mixed currencies."""

    def __init__(self, requested: str, found: list):
        super().__init__(
            message=f"Cannot roll up {', '.join(found)} into a single {requested} aggregate",
            error_code="ERR_CURRENCY_MISMATCH",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"requested": requested, "found": found}
        )


class RecordProcessingError(AppException):
    """Raised for a single transaction that cannot be settled. Never aborts a run."""

    def __init__(self, message: str, transaction_id: Any = None, error_code: str = "ERR_RECORD_001"):
        self.transaction_id = transaction_id
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"transaction_id": transaction_id}
        )


class RunFatalError(AppException):
    """Raised when a settlement run cannot continue."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_RUN_FATAL",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details
        )


class RunTakenOverError(AppException):
    """Raised when a run finds its batch no longer in the state it left it in."""

    def __init__(self, batch_id: int):
        self.batch_id = batch_id
        super().__init__(
            message=f"Settlement batch {batch_id} was finalized by another worker",
            error_code="ERR_RUN_TAKEN_OVER",
            status_code=status.HTTP_409_CONFLICT,
            details={"batch_id": batch_id}
        )


class SettlementInProgressError(AppException):
    """Raised when a generation run is already in flight for a period."""

    def __init__(self, year: int, month: int, batch_id: Optional[int] = None):
        super().__init__(
            message=f"Settlement generation for {year}-{month:02d} is already in progress",
            error_code="ERR_SETTLEMENT_IN_PROGRESS",
            status_code=status.HTTP_409_CONFLICT,
            details={"year": year, "month": month, "batch_id": batch_id}
        )


class BatchNotFinalError(AppException):
    """Raised when a report is requested for a batch that has not completed."""

    def __init__(self, batch_id: int, batch_status: str):
        super().__init__(
            message=f"Settlement batch {batch_id} is {batch_status}, reports require COMPLETED",
            error_code="ERR_BATCH_NOT_FINAL",
            status_code=status.HTTP_409_CONFLICT,
            details={"batch_id": batch_id, "status": batch_status}
        )


class ConcurrentModificationError(AppException):
    """Raised when a per-merchant schema lock cannot be obtained in time."""

    def __init__(self, resource: str):
        super().__init__(
            message=f"{resource} is being modified by another request, retry shortly",
            error_code="ERR_CONFLICT_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"resource": resource}
        )


class InsufficientPermissionsError(AppException):
    """Raised when user doesn't have permission to perform an action."""

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class ResourceNotFoundError(AppException):
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


class AuthenticationError(AppException):
    """Raised for authentication failures."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(
            message=message,
            error_code="ERR_AUTH_001",
            status_code=status.HTTP_401_UNAUTHORIZED
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": jsonable_encoder(exc.details)
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
        409: "ERR_CONFLICT",
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
                "errors": jsonable_encoder(exc.errors())
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s: %s", type(exc).__name__, exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
