# portal/core/errors.py
"""
Error taxonomy for the auth core.

Every error carries the HTTP status and envelope code it renders as, so the
app-level handler in portal.main stays a single function. Messages on these
errors are safe to show to callers; anything internal is logged where it is
caught and never copied in here.
"""
from __future__ import annotations


class ServiceError(Exception):
    status_code = 500
    error_code = "INTERNAL_ERROR"
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, *, headers: dict[str, str] | None = None) -> None:
        self.message = message or self.default_message
        self.headers = headers
        super().__init__(self.message)


# -------------------------
# Authentication
# -------------------------
class InvalidCredentialsError(ServiceError):
    """Unknown email and wrong password are deliberately indistinguishable."""

    status_code = 401
    error_code = "INVALID_CREDENTIALS"
    default_message = "Invalid email or password"


class AccountSuspendedError(ServiceError):
    status_code = 401
    error_code = "ACCOUNT_SUSPENDED"
    default_message = "Your account has been suspended. Please contact an administrator."


class UnauthorizedError(ServiceError):
    status_code = 401
    error_code = "UNAUTHORIZED"
    default_message = "Unauthorized"

    def __init__(self, message: str | None = None, *, headers: dict[str, str] | None = None) -> None:
        super().__init__(message, headers=headers or {"WWW-Authenticate": "Bearer"})


class ForbiddenError(ServiceError):
    status_code = 403
    error_code = "FORBIDDEN"
    default_message = "Forbidden"


# -------------------------
# Token verification
# -------------------------
class TokenError(UnauthorizedError):
    """Base for access-token verification failures; rendered as a plain 401."""


class InvalidTokenError(TokenError):
    pass


class ExpiredTokenError(TokenError):
    pass


class MalformedTokenError(TokenError):
    pass


# -------------------------
# Resource state
# -------------------------
class NotFoundError(ServiceError):
    status_code = 404
    error_code = "NOT_FOUND"
    default_message = "Not found"


class ConflictError(ServiceError):
    status_code = 409
    error_code = "CONFLICT"
    default_message = "Conflict"


class InvalidStateError(ServiceError):
    status_code = 400
    error_code = "INVALID_STATE"
    default_message = "Operation not allowed in the current state"


# -------------------------
# Infrastructure
# -------------------------
class ServiceUnavailableError(ServiceError):
    status_code = 503
    error_code = "SERVICE_UNAVAILABLE"
    default_message = "Service temporarily unavailable"

    def __init__(self, message: str | None = None, *, retry_after_seconds: int = 5) -> None:
        super().__init__(message, headers={"Retry-After": str(retry_after_seconds)})
