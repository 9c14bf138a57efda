"""
auth/errors.py -- Domain error taxonomy for identity and access control.

Every error carries a stable machine-readable code and the HTTP status the
API layer maps it to. auth/ never imports fastapi for this: api/main.py owns
the single exception handler that turns an AuthError into the response
envelope.

Session-token failures are a separate family (SessionTokenError). The gate
collapses all of them into Unauthenticated so callers cannot distinguish a
forged token from an expired one.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all domain errors raised by auth/."""

    code = "auth_error"
    status_code = 400
    default_message = "Request could not be processed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AuthError):
    code = "validation_error"
    status_code = 400
    default_message = "Request validation failed."


class DuplicateEmail(AuthError):
    code = "duplicate_email"
    status_code = 400
    default_message = "User already exists."


class InvalidCredentials(AuthError):
    # One message for unknown email and wrong password.
    code = "invalid_credentials"
    status_code = 401
    default_message = "Invalid credentials."


class AccountDeactivated(AuthError):
    code = "account_deactivated"
    status_code = 401
    default_message = "Account is deactivated."


class Unauthenticated(AuthError):
    code = "unauthenticated"
    status_code = 401
    default_message = "Not authorized to access this route."


class Forbidden(AuthError):
    code = "forbidden"
    status_code = 403
    default_message = "You do not have permission to perform this action."


class NotFound(AuthError):
    code = "not_found"
    status_code = 404
    default_message = "User not found."


class Internal(AuthError):
    code = "internal_error"
    status_code = 500
    default_message = "An unexpected error occurred."


# ---------------------------------------------------------------------------
# Single-use token errors (verification / password reset / refresh)
# ---------------------------------------------------------------------------


class TokenNotFound(AuthError):
    code = "token_not_found"
    status_code = 400
    default_message = "Token is invalid."


class TokenExpired(AuthError):
    code = "token_expired"
    status_code = 400
    default_message = "Token has expired."


class TokenAlreadyUsed(AuthError):
    code = "token_already_used"
    status_code = 400
    default_message = "Token has already been used."


# ---------------------------------------------------------------------------
# Session token errors
# ---------------------------------------------------------------------------


class SessionTokenError(Exception):
    """Raised by SessionTokens.verify(). Never crosses the API boundary as-is."""


class SessionTokenMalformed(SessionTokenError):
    """Wrong structure, bad signature, or signed with a different secret."""


class SessionTokenExpired(SessionTokenError):
    pass


class SessionTokenInvalid(SessionTokenError):
    """Signature checks out but the claim set is unusable."""
