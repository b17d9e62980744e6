"""
Failure taxonomy for the authentication core.

Every expected failure is an ``AuthError`` carrying an HTTP status and a
message that is safe to show to the client. Anything else is reported as a
``ServiceError`` with a generic message.
"""

from datetime import datetime
from typing import List, Optional


class AuthError(Exception):
    status_code = 400
    code = "AUTH_ERROR"
    default_message = "Request failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"success": False, "message": self.message}


class ValidationError(AuthError):
    code = "VALIDATION_ERROR"
    default_message = "Validation failed"

    def __init__(self, errors: List[dict], message: Optional[str] = None):
        super().__init__(message)
        self.errors = errors

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        return cls([{"field": field, "message": message}], message=message)

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["errors"] = self.errors
        return body


class DuplicateAccount(AuthError):
    code = "DUPLICATE_ACCOUNT"
    default_message = "An account with this email already exists"


class InvalidCredentials(AuthError):
    status_code = 401
    code = "INVALID_CREDENTIALS"
    default_message = "Invalid email or password"


class AccountLocked(AuthError):
    status_code = 401
    code = "ACCOUNT_LOCKED"

    def __init__(self, locked_until: datetime, now: datetime):
        self.locked_until = locked_until
        self.retry_after_seconds = max(int((locked_until - now).total_seconds()), 1)
        super().__init__(
            "Account is locked due to too many failed attempts. "
            f"Try again after {locked_until.strftime('%Y-%m-%d %H:%M:%S')} UTC"
        )

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["lockedUntil"] = self.locked_until.isoformat() + "Z"
        body["retryAfterSeconds"] = self.retry_after_seconds
        return body


class EmailNotVerified(AuthError):
    status_code = 401
    code = "EMAIL_NOT_VERIFIED"
    default_message = "Please verify your email address before logging in"


class TwoFactorRequired(AuthError):
    status_code = 401
    code = "TWO_FACTOR_REQUIRED"
    default_message = "Two-factor authentication code required"

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["requiresTwoFactor"] = True
        return body


class InvalidToken(AuthError):
    code = "INVALID_TOKEN"
    default_message = "Invalid or expired verification token"


class InvalidOrExpiredToken(AuthError):
    code = "INVALID_OR_EXPIRED_TOKEN"
    default_message = "Invalid or expired reset token"


class NotAuthenticated(AuthError):
    status_code = 401
    code = "NOT_AUTHENTICATED"
    default_message = "Access token required"


class AccountNotFound(AuthError):
    status_code = 404
    code = "ACCOUNT_NOT_FOUND"
    default_message = "User not found"


class RateLimited(AuthError):
    status_code = 429
    code = "RATE_LIMITED"
    default_message = "Too many authentication attempts. Please try again later."

    def __init__(self, retry_after_seconds: int, message: Optional[str] = None):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["retryAfterSeconds"] = self.retry_after_seconds
        return body


class ServiceError(AuthError):
    status_code = 500
    code = "SERVICE_ERROR"
    default_message = "Something went wrong. Please try again."


class DeliveryError(Exception):
    """Raised by a mail transport when the send itself fails."""
