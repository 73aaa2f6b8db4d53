"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers. Every
domain failure raised by the order and ledger engines maps 1:1 to one of
the classes below.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict, List, Optional

logger = logging.getLogger("dailyorder")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ValidationFailedError(AppException):
    """Raised when input is well-formed JSON but semantically invalid."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_VALIDATION_001",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
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

    def __init__(self, resource: str, resource_id: Any = None, missing_ids: Optional[List[Any]] = None):
        message = f"{resource} not found"
        if missing_ids:
            message = f"{resource} not found: {', '.join(str(i) for i in missing_ids)}"
        elif resource_id:
            message = f"{resource} with ID {resource_id} not found"
        details = {"resource": resource, "id": resource_id}
        if missing_ids:
            details["missing_ids"] = list(missing_ids)
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details=details
        )


class IllegalTransitionError(AppException):
    """Raised when an order cannot move to the requested status."""

    def __init__(self, message: str, order_nos: Optional[List[str]] = None, details: Dict[str, Any] = None):
        payload = dict(details or {})
        payload["order_nos"] = list(order_nos or [])
        super().__init__(
            message=message,
            error_code="ERR_CONFLICT_001",
            status_code=status.HTTP_409_CONFLICT,
            details=payload
        )


class LimitExceededError(AppException):
    """Raised when the tenant's plan does not allow creating more of a resource."""

    def __init__(self, message: str, limit: int, current: int, remaining: int):
        super().__init__(
            message=message,
            error_code="ERR_LIMIT_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details={
                "limit": limit,
                "current": current,
                "remaining": remaining,
                "upgrade_required": True
            }
        )


class OutsideOrderingWindowError(AppException):
    """Raised when orders are placed outside the configured ordering windows."""

    def __init__(self, windows: Dict[str, Any] = None):
        super().__init__(
            message="You are not allowed to create order right now! Please come back in next morning or evening",
            error_code="ERR_WINDOW_CLOSED",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"retry_later": True, "windows": windows or {}}
        )


class DependencyUnavailableError(AppException):
    """Raised when a hard dependency (catalog) cannot be reached."""

    def __init__(self, dependency: str, message: str = None):
        super().__init__(
            message=message or f"{dependency} is unavailable",
            error_code="ERR_DEPENDENCY_001",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"dependency": dependency}
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
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
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
                "errors": jsonable_errors(exc)
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s", type(exc).__name__)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    # pydantic v2 puts exception instances into ctx for custom validators
    errors = []
    for error in exc.errors():
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {key: str(value) for key, value in error["ctx"].items()}
        errors.append(error)
    return errors
