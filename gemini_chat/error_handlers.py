# gemini_chat/error_handlers.py
"""
Centralized error handling: error codes, the AppException hierarchy and the
FastAPI exception handlers that render every failure in the same envelope.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
import traceback

from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError, IntegrityError

from .logging_config import get_logger
from .config import settings

logger = get_logger(__name__)


# ============================================================================
# ERROR CODES
# ============================================================================

class ErrorCode:
    """Stable codes clients can switch on"""

    # General errors (1xxx)
    INTERNAL_SERVER_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    UNAUTHORIZED = "ERR_1003"
    FORBIDDEN = "ERR_1004"
    RATE_LIMIT_EXCEEDED = "ERR_1005"
    CONFLICT = "ERR_1006"

    # Database errors (2xxx)
    DATABASE_ERROR = "ERR_2000"
    INTEGRITY_ERROR = "ERR_2001"

    # Business logic errors (3xxx)
    DAILY_QUOTA_EXCEEDED = "ERR_3000"
    INVALID_OTP = "ERR_3001"
    INVALID_CREDENTIALS = "ERR_3002"
    WEBHOOK_SIGNATURE_INVALID = "ERR_3003"

    # External service errors (4xxx)
    REDIS_ERROR = "ERR_4001"
    BROKER_ERROR = "ERR_4002"
    PAYMENT_GATEWAY_ERROR = "ERR_4003"


# ============================================================================
# CUSTOM EXCEPTIONS
# ============================================================================

class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationException(AppException):
    """Raised when input is missing or malformed"""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: str = ErrorCode.VALIDATION_ERROR,
        status_code: int = status.HTTP_422_UNPROCESSABLE_ENTITY
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            details=details
        )


class InvalidOTPException(ValidationException):
    """Raised when an OTP is wrong, expired or already used"""

    def __init__(self, message: str = "Invalid or expired OTP"):
        super().__init__(
            message=message,
            error_code=ErrorCode.INVALID_OTP,
            status_code=status.HTTP_400_BAD_REQUEST
        )


class NotFoundException(AppException):
    """Raised when a resource is not found"""

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=ErrorCode.NOT_FOUND,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "identifier": str(identifier)}
        )


class ConflictException(AppException):
    """Raised when a unique resource already exists"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code=ErrorCode.CONFLICT,
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


class UnauthorizedException(AppException):
    """Raised when authentication fails"""

    def __init__(self, message: str = "Authentication required", error_code: str = ErrorCode.UNAUTHORIZED):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_401_UNAUTHORIZED
        )


class ForbiddenException(AppException):
    """Raised when user doesn't have permission"""

    def __init__(self, message: str = "Access denied"):
        super().__init__(
            message=message,
            error_code=ErrorCode.FORBIDDEN,
            status_code=status.HTTP_403_FORBIDDEN
        )


class QuotaExceededException(AppException):
    """Raised when a free-tier user has used up today's messages"""

    def __init__(self, limit: int, used: int):
        super().__init__(
            message="Daily limit reached. Upgrade to Pro for unlimited messages.",
            error_code=ErrorCode.DAILY_QUOTA_EXCEEDED,
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            details={"limit": limit, "used": used}
        )


class ExternalServiceException(AppException):
    """Raised when Redis, the broker or a payment provider is unavailable"""

    def __init__(
        self,
        service_name: str,
        message: str,
        error_code: str = ErrorCode.INTERNAL_SERVER_ERROR
    ):
        super().__init__(
            message=f"{service_name} error: {message}",
            error_code=error_code,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"service": service_name}
        )


# ============================================================================
# ERROR RESPONSE FORMATTER
# ============================================================================

def format_error_response(
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Returns:
        {
            "error": {
                "code": "ERR_3000",
                "message": "Daily limit reached...",
                "details": {...},
                "request_id": "abc123",
                "timestamp": "2024-01-01T00:00:00Z"
            }
        }
    """
    response = {
        "error": {
            "code": error_code,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
    }

    if details:
        response["error"]["details"] = details

    if request_id:
        response["error"]["request_id"] = request_id

    return response


# ============================================================================
# FASTAPI EXCEPTION HANDLERS
# ============================================================================

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)

    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"Application error: {exc.message}",
        extra={
            "request_id": request_id,
            "extra_data": {
                "error_code": exc.error_code,
                "status_code": exc.status_code,
                "path": request.url.path,
                "method": request.method,
                "details": exc.details
            }
        },
        exc_info=exc.status_code >= 500
    )

    details = exc.details
    if settings.ENVIRONMENT == "production" and exc.status_code >= 500:
        details = None

    return JSONResponse(
        status_code=exc.status_code,
        content=format_error_response(
            error_code=exc.error_code,
            message=exc.message,
            details=details,
            request_id=request_id
        )
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)

    errors = [
        {
            "field": ".".join(str(x) for x in error["loc"]),
            "message": error["msg"],
            "type": error["type"]
        }
        for error in exc.errors()
    ]

    logger.warning(
        "Validation error",
        extra={
            "request_id": request_id,
            "extra_data": {
                "path": request.url.path,
                "method": request.method,
                "errors": errors
            }
        }
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=format_error_response(
            error_code=ErrorCode.VALIDATION_ERROR,
            message="Request validation failed",
            details={"validation_errors": errors},
            request_id=request_id
        )
    )


async def rate_limit_exception_handler(
    request: Request,
    exc: RateLimitExceeded
) -> JSONResponse:
    """SlowAPI request limits (auth endpoints)"""
    from .rate_limit import get_rate_limit_message, log_rate_limit_hit

    request_id = getattr(request.state, "request_id", None)
    log_rate_limit_hit(request, str(exc.detail))

    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=format_error_response(
            error_code=ErrorCode.RATE_LIMIT_EXCEEDED,
            message="Too many requests. Please try again later.",
            details=get_rate_limit_message(request.url.path, str(exc.detail)),
            request_id=request_id
        )
    )


async def sqlalchemy_exception_handler(
    request: Request,
    exc: SQLAlchemyError
) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)

    if isinstance(exc, IntegrityError):
        error_code = ErrorCode.INTEGRITY_ERROR
        message = "Database integrity constraint violated"
        status_code = status.HTTP_409_CONFLICT
    else:
        error_code = ErrorCode.DATABASE_ERROR
        message = "Database operation failed"
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    logger.error(
        f"Database error: {exc}",
        extra={
            "request_id": request_id,
            "extra_data": {
                "error_type": type(exc).__name__,
                "path": request.url.path,
                "method": request.method
            }
        },
        exc_info=True
    )

    details = None if settings.ENVIRONMENT == "production" else {"database_error": str(exc)}

    return JSONResponse(
        status_code=status_code,
        content=format_error_response(
            error_code=error_code,
            message=message,
            details=details,
            request_id=request_id
        )
    )


async def generic_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """Catch-all handler for unexpected errors"""

    request_id = getattr(request.state, "request_id", None)

    logger.critical(
        f"Unhandled exception: {exc}",
        extra={
            "request_id": request_id,
            "extra_data": {
                "exception_type": type(exc).__name__,
                "path": request.url.path,
                "method": request.method
            }
        },
        exc_info=True
    )

    if settings.ENVIRONMENT == "production":
        message = "An unexpected error occurred."
        details = None
    else:
        message = str(exc)
        details = {"traceback": traceback.format_exc().split("\n")}

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=format_error_response(
            error_code=ErrorCode.INTERNAL_SERVER_ERROR,
            message=message,
            details=details,
            request_id=request_id
        )
    )


def register_exception_handlers(app):
    """Most specific first; the Exception catch-all goes last"""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
