"""
auth/errors.py -- Error taxonomy for credential verification and sessions.

Every failure the auth core can produce is one of these classes. Each carries a
stable machine-readable code and the HTTP status the transport layer maps it
to, so api/main.py needs a single exception handler for the whole family.

Credential failures never reveal whether an email is registered: unknown
email, wrong password and inactive account all raise InvalidCredentials with
the same message. AccountLocked exposes only the lock expiry, never the
remaining-attempts count.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional


class AuthError(Exception):
    """Base class for auth-layer exceptions mapped to HTTP responses."""

    status_code: int = 401
    code: str = "unauthorized"
    default_message: str = "Authentication failed."

    def __init__(self, message: Optional[str] = None, *, detail: Optional[dict[str, Any]] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)
        self.detail = detail or {}


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    default_message = "Invalid credentials."


class AccountLocked(AuthError):
    status_code = 403
    code = "account_locked"
    default_message = "Account locked."

    def __init__(self, locked_until: datetime) -> None:
        super().__init__(
            f"Account locked. Try again after {locked_until.isoformat()}",
            detail={"locked_until": locked_until.isoformat()},
        )
        self.locked_until = locked_until


class UserNotFound(AuthError):
    status_code = 404
    code = "user_not_found"
    default_message = "User not found."


class NoValidSession(AuthError):
    code = "no_valid_session"
    default_message = "No valid refresh token found."


class InvalidRefreshToken(AuthError):
    code = "invalid_refresh_token"
    default_message = "Invalid refresh token."


class TokenInvalid(AuthError):
    code = "token_invalid"
    default_message = "Invalid token."


class TokenExpired(AuthError):
    code = "token_expired"
    default_message = "Token expired."


class EmailAlreadyRegistered(AuthError):
    status_code = 409
    code = "conflict"
    default_message = "A user with that email already exists."


class StorageFailure(AuthError):
    """A durable-store operation failed. Always surfaced, never swallowed."""

    status_code = 500
    code = "storage_failure"
    default_message = "Storage operation failed."


__all__ = [
    "AuthError",
    "InvalidCredentials",
    "AccountLocked",
    "UserNotFound",
    "NoValidSession",
    "InvalidRefreshToken",
    "TokenInvalid",
    "TokenExpired",
    "EmailAlreadyRegistered",
    "StorageFailure",
]
