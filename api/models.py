"""
API request and response models for ClinicAuth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
password_hash never appears in any response model.
"""

from datetime import datetime
from typing import Any, Optional, Union

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import Account, Role
from auth.passwords import BCRYPT_MAX_BYTES

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


def _check_password_bytes(value: str) -> str:
    # max_length counts characters; bcrypt's limit is on UTF-8 bytes.
    if len(value.encode("utf-8")) > BCRYPT_MAX_BYTES:
        raise ValueError(f"Password must be at most {BCRYPT_MAX_BYTES} bytes when UTF-8 encoded")
    return value


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    Email is not lowercased -- lookup is case-sensitive, as stored.
    Passwords over 72 bytes are not rejected here: they can never match a
    stored hash, so they fail as ordinary bad credentials.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=72)


class RefreshRequest(BaseModel):
    """Optional body for POST /api/v1/auth/refresh. A token here takes priority over the cookie."""

    refresh_token: Optional[str] = Field(default=None, max_length=4096)


class UserCreate(BaseModel):
    """Body for POST /api/v1/users.

    The email is format-checked with email-validator but stored exactly as
    submitted. EmailStr would normalize the domain to lowercase, and login
    matches the stored address case-sensitively.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255)
    password: str = Field(min_length=8, max_length=72, description="Password must be at least 8 characters long")
    role: Role
    is_active: bool = True

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        try:
            validate_email(value, check_deliverability=False)
        except EmailNotValidError as exc:
            raise ValueError(str(exc)) from exc
        return value

    @field_validator("password")
    @classmethod
    def check_password_bytes(cls, value: str) -> str:
        return _check_password_bytes(value)


class PasswordReset(BaseModel):
    new_password: str = Field(min_length=8, max_length=72)

    @field_validator("new_password")
    @classmethod
    def check_password_bytes(cls, value: str) -> str:
        return _check_password_bytes(value)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Outward view of an Account."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    role: Role
    is_active: bool
    failed_login_attempts: int
    locked_until: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
    password_changed_at: Optional[datetime] = None
    mfa_enabled: bool = False
    created_at: Optional[datetime] = None

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(
            id=account.id,
            email=account.email,
            role=account.role,
            is_active=account.is_active,
            failed_login_attempts=account.failed_login_attempts,
            locked_until=account.locked_until,
            last_login_at=account.last_login_at,
            password_changed_at=account.password_changed_at,
            mfa_enabled=account.mfa_enabled,
            created_at=account.created_at,
        )


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str = "Login successful"
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: AccountResponse


class RefreshResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str = "Tokens refreshed successfully"
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class UserListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    data: list[AccountResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[Union[str, dict[str, Any]]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
