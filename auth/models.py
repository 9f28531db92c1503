"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores, the verifier and the session issuer do the work.

Timestamps are timezone-aware UTC datetimes throughout the auth package. The
store converts to and from its column representation.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    ADMIN = "ADMIN"
    DOCTOR = "DOCTOR"
    STAFF = "STAFF"


@dataclass
class Account:
    """A user account as held by the user directory.

    password_hash is never serialized outward -- the API layer maps accounts
    to response models that omit it.

    failed_login_attempts and locked_until are the lockout counters. They are
    written only through UserStore.update_lockout_state() and the
    administrative unlock / reset-password operations.

    mfa_enabled is stored and returned but not evaluated anywhere.
    """

    email: str
    password_hash: str
    role: Role
    id: str | None = None
    is_active: bool = True
    failed_login_attempts: int = 0
    locked_until: datetime | None = None
    last_login_at: datetime | None = None
    password_changed_at: datetime | None = None
    mfa_enabled: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class LockoutState:
    """The two lockout fields, as computed by LockoutPolicy."""

    failed_login_attempts: int
    locked_until: datetime | None


@dataclass
class RefreshSession:
    """Server-side record of one issued refresh token.

    token_hash is HMAC-SHA256(JWT_SECRET, raw_token). The raw token is never
    persisted. Rows are never deleted by the core -- is_revoked is the only
    terminal marker and flips from False to True exactly once.
    """

    user_id: str
    token_hash: str
    token_family: str
    version: int
    expires_at: datetime
    id: int | None = None
    is_revoked: bool = False
    created_at: datetime | None = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class LoginResult:
    access_token: str
    refresh_token: str
    account: Account


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, built from verified access-token claims.

    Passed explicitly down the call chain by auth.dependencies rather than
    stashed on ambient request state.
    """

    user_id: str
    email: str
    role: Role
    session_id: str
