"""
core/errors.py -- Error taxonomy shared by every VerifyHub layer.

Each error carries a stable machine-readable error_code, a human-readable
message, an HTTP status and an optional details dict. api/main.py turns them
into the failure envelope:

    {"success": false, "errorCode": ..., "message": ..., "details": {...}}

Operational vs non-operational:
  is_operational=True  -- an expected business-rule failure. The message is
                          shown to the client verbatim.
  is_operational=False -- infrastructure trouble (mail relay down, store
                          unreachable). The exception handler logs the real
                          cause and masks the response behind a generic 500.

Deliberate ambiguity: InvalidCredentialsError covers both "no such email" and
"wrong password"; InvalidOtpError covers both "wrong code" and "expired code";
InvalidTokenError covers malformed, expired and badly-signed tokens. Do not
add subclasses that split these apart -- the split would leak to clients.

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

from __future__ import annotations

from typing import Any, Optional


class AppError(Exception):
    """Root exception for all VerifyHub errors."""

    http_status_code: int = 400
    error_code: str = "APP_ERROR"
    is_operational: bool = True
    default_message: str = "Request could not be processed."

    def __init__(self, message: Optional[str] = None, details: Optional[dict[str, Any]] = None) -> None:
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "errorCode": self.error_code,
            "message": self.message,
            "details": self.details,
        }


# ---------------------------------------------------------------------------
# Input and lookup failures
# ---------------------------------------------------------------------------


class ValidationFailedError(AppError):
    http_status_code = 400
    error_code = "VALIDATION_ERROR"
    default_message = "Validation failed."


class ConflictError(AppError):
    http_status_code = 409
    error_code = "CONFLICT"
    default_message = "Resource already exists."


class AccountExistsError(ConflictError):
    error_code = "USER_ALREADY_EXISTS"
    default_message = "An account with this email already exists. Please login instead."


class NotFoundError(AppError):
    http_status_code = 404
    error_code = "NOT_FOUND"
    default_message = "Resource not found."


class AccountNotFoundError(NotFoundError):
    error_code = "USER_NOT_FOUND"
    default_message = "User not found."


# ---------------------------------------------------------------------------
# Authentication and authorization
# ---------------------------------------------------------------------------


class AuthenticationError(AppError):
    http_status_code = 401
    error_code = "AUTHENTICATION_REQUIRED"
    default_message = "Authentication required."


class InvalidTokenError(AuthenticationError):
    error_code = "INVALID_TOKEN"
    default_message = "Invalid or expired token."


class InvalidCredentialsError(AuthenticationError):
    error_code = "INVALID_CREDENTIALS"
    default_message = "Invalid email or password."


class IncorrectPasswordError(AuthenticationError):
    error_code = "INCORRECT_PASSWORD"
    default_message = "Current password is incorrect."


class ForbiddenError(AppError):
    http_status_code = 403
    error_code = "FORBIDDEN"
    default_message = "You do not have permission to perform this action."


# ---------------------------------------------------------------------------
# Account lifecycle business rules
# ---------------------------------------------------------------------------


class AlreadyVerifiedError(AppError):
    http_status_code = 400
    error_code = "ALREADY_VERIFIED"
    default_message = "Email is already verified. Please login instead."


class InvalidOtpError(AppError):
    http_status_code = 400
    error_code = "INVALID_OTP"
    default_message = "Invalid or expired OTP."


class EmailNotVerifiedError(AppError):
    http_status_code = 403
    error_code = "EMAIL_NOT_VERIFIED"
    default_message = "Email is not verified. Please verify your email before logging in."


class AccountSuspendedError(AppError):
    http_status_code = 403
    error_code = "ACCOUNT_SUSPENDED"
    default_message = "Your account is not active. Please contact support."


class SelfLockoutError(AppError):
    http_status_code = 400
    error_code = "SELF_LOCKOUT"
    default_message = "You cannot change your own role or status."


# ---------------------------------------------------------------------------
# Infrastructure (non-operational -- masked at the HTTP boundary)
# ---------------------------------------------------------------------------


class InfrastructureError(AppError):
    http_status_code = 500
    error_code = "INTERNAL_SERVER_ERROR"
    is_operational = False
    default_message = "Infrastructure failure."


class EmailDeliveryError(InfrastructureError):
    error_code = "EMAIL_DELIVERY_FAILED"
    default_message = "Failed to send email."
