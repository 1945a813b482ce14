"""Domain exception hierarchy for structured error responses."""

from __future__ import annotations


class AppException(Exception):
    """Base exception for all domain errors.

    Subclasses set ``code``, ``status_code`` and ``retryable`` at the class
    level; callers provide ``message`` and an optional ``details`` list.
    """

    code: str = "APP_ERROR"
    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, details: list[dict] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []


class NotFoundException(AppException):
    code = "NOT_FOUND"
    status_code = 404


class ConflictException(AppException):
    code = "CONFLICT"
    status_code = 409


class ForbiddenException(AppException):
    code = "FORBIDDEN"
    status_code = 403


class UnauthorizedException(AppException):
    code = "UNAUTHORIZED"
    status_code = 401


class ValidationException(AppException):
    code = "VALIDATION_ERROR"
    status_code = 422


class WrongStateException(AppException):
    """The requested change is not valid from the pickup's current status."""

    code = "WRONG_STATE"
    status_code = 409


class AlreadyTerminalException(WrongStateException):
    """The pickup is Completed or Cancelled and accepts no further changes."""

    code = "ALREADY_TERMINAL"


class LeadTimeTooShortException(AppException):
    code = "LEAD_TIME_TOO_SHORT"
    status_code = 422


class StoreUnavailableException(AppException):
    """Transient storage failure. The only error callers should retry."""

    code = "STORE_UNAVAILABLE"
    status_code = 503
    retryable = True


class RateLimitException(AppException):
    code = "RATE_LIMITED"
    status_code = 429
    retryable = True
