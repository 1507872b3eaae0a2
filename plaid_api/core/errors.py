"""
Application Error Module

This module provides the exception classes used across the API and the
lifecycle core. HTTP-facing errors carry a status code and a machine code
and are rendered by the global error handler as:

    {
        "success": false,
        "error": {
            "message": "Human-readable error message",
            "code": "SPECIFIC_CODE"
        }
    }

Available Exception Classes:
    - AppError: Base class for all HTTP-facing errors
    - BadRequestError (400)
    - ValidationError (400)
    - UnauthorizedError (401)
    - ForbiddenError (403)
    - NotFoundError (404)
    - ConflictError (409)
    - RateLimitError (429)
    - ServerError (500)
    - ServiceUnavailableError (503)
    - ConfigurationError: Invalid or unreadable configuration
    - ConfigurationConflictError: Resource fingerprint drift rejected

Usage:
    from plaid_api.core.errors import NotFoundError

    raise NotFoundError(f"Habit '{habit_id}' not found")
"""

from typing import Any, Dict, Optional


class AppError(Exception):
    """
    Base class for all HTTP-facing application errors.

    Attributes:
        message: Human-readable error message
        status_code: HTTP status code
        code: Specific machine-readable error code
    """

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Response body for this error."""
        return {
            "success": False,
            "error": {
                "message": self.message,
                "code": self.code
            }
        }


class BadRequestError(AppError):
    """400 - Malformed request."""

    status_code = 400
    code = "BAD_REQUEST"

    def __init__(self, message: str = "Bad Request", code: Optional[str] = None):
        super().__init__(message, code)


class ValidationError(AppError):
    """400 - Request payload failed validation."""

    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, message: str = "Validation Failed", code: Optional[str] = None):
        super().__init__(message, code)


class UnauthorizedError(AppError):
    """401 - Missing or invalid credentials."""

    status_code = 401
    code = "UNAUTHORIZED"

    def __init__(self, message: str = "Unauthorized", code: Optional[str] = None):
        super().__init__(message, code)


class ForbiddenError(AppError):
    """403 - Authenticated but not allowed."""

    status_code = 403
    code = "FORBIDDEN"

    def __init__(self, message: str = "Forbidden", code: Optional[str] = None):
        super().__init__(message, code)


class NotFoundError(AppError):
    """404 - Resource not found."""

    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, message: str = "Resource not found", code: Optional[str] = None):
        super().__init__(message, code)


class ConflictError(AppError):
    """409 - Resource already exists."""

    status_code = 409
    code = "CONFLICT"

    def __init__(self, message: str = "Resource already exists", code: Optional[str] = None):
        super().__init__(message, code)


class RateLimitError(AppError):
    """429 - Too many requests."""

    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, message: str = "Too many requests", code: Optional[str] = None):
        super().__init__(message, code)


class ServerError(AppError):
    """500 - Unexpected server error."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str = "Internal Server Error", code: Optional[str] = None):
        super().__init__(message, code)


class ServiceUnavailableError(AppError):
    """
    503 - Service unavailable.

    Raised while the server is draining, or when a required resource
    cannot be served under the current configuration.
    """

    status_code = 503
    code = "SERVICE_UNAVAILABLE"

    def __init__(self, message: str = "Service Unavailable", code: Optional[str] = None):
        super().__init__(message, code)


class ConfigurationConflictError(ServiceUnavailableError):
    """
    Resource fingerprint drift rejected under the fail-fast policy.

    Not fatal to the process: the cached handle stays in service and
    only the caller that asked for the new configuration fails.

    Attributes:
        resource: Resource kind (e.g. "database")
        cached_label: Label of the fingerprint currently in service
        requested_label: Label of the fingerprint that was requested
    """

    code = "CONFIGURATION_CONFLICT"

    def __init__(self, resource: str, cached_label: str, requested_label: str):
        self.resource = resource
        self.cached_label = cached_label
        self.requested_label = requested_label

        message = (
            f"The {resource} resource is already initialized with a "
            f"different configuration"
        )
        super().__init__(message)


class ConfigurationError(Exception):
    """
    Raised when there is a configuration error.

    This indicates a problem with the config file or environment that
    prevents the application from starting correctly.
    """

    def __init__(self, message: str):
        super().__init__(f"Configuration error: {message}")
