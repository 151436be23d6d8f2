"""
Application error taxonomy.

Every error the API surfaces is an AppError subclass carrying:
- an HTTP status code
- a stable ErrorCode
- a user-facing message and suggested action (USER_FRIENDLY_MESSAGES)

Database and network errors are the only kinds the retry helpers in
bhavan.core.retry will repeat. Payment errors are surfaced as-is so a
gateway failure never turns into a duplicate charge.
"""

import logging
import secrets
import time
import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    AUTHORIZATION_ERROR = "AUTHORIZATION_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    PAYMENT_ERROR = "PAYMENT_ERROR"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# code -> (message, suggested action)
USER_FRIENDLY_MESSAGES: Dict[ErrorCode, tuple[str, str]] = {
    ErrorCode.VALIDATION_ERROR: (
        "Please check your input and try again.",
        "Review the highlighted fields and correct any errors.",
    ),
    ErrorCode.NOT_FOUND: (
        "The requested item could not be found.",
        "Check the link or reference number and try again.",
    ),
    ErrorCode.AUTHENTICATION_ERROR: (
        "Please log in to continue.",
        "Sign in to your account and try again.",
    ),
    ErrorCode.AUTHORIZATION_ERROR: (
        "You don't have permission to perform this action.",
        "Contact an administrator if you need access.",
    ),
    ErrorCode.DATABASE_ERROR: (
        "We're having trouble accessing our records right now.",
        "Please try again in a few moments.",
    ),
    ErrorCode.NETWORK_ERROR: (
        "We couldn't reach an external service.",
        "Check your connection and try again.",
    ),
    ErrorCode.PAYMENT_ERROR: (
        "There was a problem processing your payment.",
        "Please try again or use a different payment method. You have not been charged twice.",
    ),
    ErrorCode.RATE_LIMIT_EXCEEDED: (
        "Too many requests. Please slow down.",
        "Wait a moment before trying again.",
    ),
    ErrorCode.SERVICE_UNAVAILABLE: (
        "This service is temporarily unavailable.",
        "Please try again later or contact support.",
    ),
    ErrorCode.INTERNAL_ERROR: (
        "Something went wrong on our end.",
        "Please try again. If the problem persists, contact support.",
    ),
}


class AppError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500
    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        *,
        context: Optional[Dict[str, Any]] = None,
        is_operational: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.is_operational = is_operational
        self.timestamp = datetime.now(timezone.utc)

    @property
    def retryable(self) -> bool:
        return False

    def details(self) -> Dict[str, Any]:
        """Kind-specific details included in the response body."""
        return {}


class ValidationError(AppError):
    status_code = 400
    code = ErrorCode.VALIDATION_ERROR

    def __init__(self, message: str, fields: Optional[Dict[str, str]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.fields = fields or {}

    def details(self) -> Dict[str, Any]:
        return {"fields": self.fields} if self.fields else {}


class NotFoundError(AppError):
    status_code = 404
    code = ErrorCode.NOT_FOUND

    def __init__(self, resource: str, identifier: Optional[Any] = None, **kwargs):
        if identifier is not None:
            message = f"{resource} with identifier '{identifier}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(message, **kwargs)
        self.resource = resource
        self.identifier = identifier


class AuthenticationError(AppError):
    status_code = 401
    code = ErrorCode.AUTHENTICATION_ERROR

    def __init__(self, message: str = "Authentication required", **kwargs):
        super().__init__(message, **kwargs)


class AuthorizationError(AppError):
    status_code = 403
    code = ErrorCode.AUTHORIZATION_ERROR

    def __init__(self, message: str = "Insufficient permissions", **kwargs):
        super().__init__(message, **kwargs)


class DatabaseError(AppError):
    status_code = 500
    code = ErrorCode.DATABASE_ERROR

    @property
    def retryable(self) -> bool:
        return True


class NetworkError(AppError):
    status_code = 503
    code = ErrorCode.NETWORK_ERROR

    def __init__(self, message: str, retryable: bool = False, **kwargs):
        super().__init__(message, **kwargs)
        self._retryable = retryable

    @property
    def retryable(self) -> bool:
        return self._retryable


class PaymentError(AppError):
    status_code = 500
    code = ErrorCode.PAYMENT_ERROR

    def __init__(self, message: str, gateway_code: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.gateway_code = gateway_code

    def details(self) -> Dict[str, Any]:
        return {"gatewayCode": self.gateway_code} if self.gateway_code else {}


class RateLimitError(AppError):
    status_code = 429
    code = ErrorCode.RATE_LIMIT_EXCEEDED

    def __init__(self, message: str = "Rate limit exceeded", retry_after: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after

    def details(self) -> Dict[str, Any]:
        return {"retryAfter": self.retry_after} if self.retry_after is not None else {}


class ServiceUnavailableError(AppError):
    status_code = 503
    code = ErrorCode.SERVICE_UNAVAILABLE


def generate_request_id() -> str:
    """Request id of the form req_<base36 ms>_<random>."""
    return f"req_{_base36(int(time.time() * 1000))}_{secrets.token_hex(5)}"


def _base36(value: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if value == 0:
        return "0"
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(digits[rem])
    return "".join(reversed(out))


def to_error_response(
    error: Exception,
    request_id: Optional[str] = None,
    include_details: bool = False,
) -> Dict[str, Any]:
    """
    Build the JSON body returned for an error.

    Only the generic user-friendly message is exposed. When include_details
    is set (development mode) the raw message and stack are added.
    """
    if isinstance(error, AppError):
        code = error.code
        retryable = error.retryable
        details = error.details()
        timestamp = error.timestamp
    else:
        code = ErrorCode.INTERNAL_ERROR
        retryable = False
        details = {}
        timestamp = datetime.now(timezone.utc)

    message, suggested_action = USER_FRIENDLY_MESSAGES[code]

    body: Dict[str, Any] = {
        "code": code.value,
        "message": message,
        "suggestedAction": suggested_action,
        "retryable": retryable,
        "timestamp": timestamp.isoformat(),
    }
    if request_id:
        body["requestId"] = request_id

    if include_details:
        details = {
            **details,
            "error": str(error),
            "type": type(error).__name__,
            "stack": "".join(traceback.format_exception(type(error), error, error.__traceback__)),
        }
    if details:
        body["details"] = details

    return {"error": body}


def log_error(
    error: Exception,
    *,
    request_context: Optional[Dict[str, Any]] = None,
    user_context: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Log one structured entry for an error and return it."""
    is_app_error = isinstance(error, AppError)
    code = error.code if is_app_error else ErrorCode.INTERNAL_ERROR
    status_code = error.status_code if is_app_error else 500
    level = "warning" if status_code < 500 else "error"

    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "code": code.value,
        "message": str(error),
        "stack": "".join(traceback.format_exception(type(error), error, error.__traceback__)),
        "context": error.context if is_app_error else {},
        "user_context": user_context or {},
        "request_context": request_context or {},
    }

    log_fn = logger.warning if level == "warning" else logger.error
    log_fn(f"{code.value}: {error}", extra={"error_entry": entry})
    return entry
