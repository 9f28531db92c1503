"""
api/routes/v1/users.py -- Administrative account management (ADMIN only).

Routes:
  POST   /api/v1/users                         -- create account
  GET    /api/v1/users?page=&limit=            -- paginated listing
  GET    /api/v1/users/{id}                    -- single account
  DELETE /api/v1/users/{id}                    -- soft-deactivate, revoke sessions
  POST   /api/v1/users/{id}/unlock             -- clear lockout counters
  POST   /api/v1/users/{id}/reset-password     -- replace password, revoke sessions

These routes mutate the same account fields the credential verifier reads.
They are not part of the rotation protocol, but deactivation and password
reset revoke every refresh session so existing refresh tokens stop working.

[M4] An admin cannot deactivate their own account.
"""

from __future__ import annotations

import math

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.models import AccountResponse, MessageResponse, PasswordReset, UserCreate, UserListResponse
from auth.dependencies import require_admin
from auth.errors import UserNotFound
from auth.models import Account, Principal
from auth.passwords import hash_password
from auth.store import RefreshTokenStore, UserStore
from core.config import get_settings

router = APIRouter()

MAX_LIMIT = 100


def _get_or_404(user_store: UserStore, user_id: str) -> Account:
    account = user_store.get_by_id(user_id)
    if account is None:
        raise UserNotFound()
    return account


@router.post("/users", response_model=AccountResponse, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    principal: Principal = Depends(require_admin),
) -> AccountResponse:
    """Create a new account. 409 if the email is already registered."""
    user_store: UserStore = request.app.state.user_store
    user_id = user_store.create_user(
        Account(
            email=body.email,
            password_hash=hash_password(body.password, get_settings().bcrypt_rounds),
            role=body.role,
            is_active=body.is_active,
        )
    )
    return AccountResponse.from_account(_get_or_404(user_store, user_id))


@router.get("/users", response_model=UserListResponse)
def list_users(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=MAX_LIMIT),
    principal: Principal = Depends(require_admin),
) -> UserListResponse:
    user_store: UserStore = request.app.state.user_store
    accounts, total = user_store.list_users(page=page, limit=limit)
    return UserListResponse(
        data=[AccountResponse.from_account(a) for a in accounts],
        total=total,
        page=page,
        limit=limit,
        total_pages=math.ceil(total / limit) if total else 0,
    )


@router.get("/users/{user_id}", response_model=AccountResponse)
def get_user(request: Request, user_id: str, principal: Principal = Depends(require_admin)) -> AccountResponse:
    return AccountResponse.from_account(_get_or_404(request.app.state.user_store, user_id))


@router.delete("/users/{user_id}", response_model=AccountResponse)
def deactivate_user(
    request: Request,
    user_id: str,
    principal: Principal = Depends(require_admin),
) -> AccountResponse:
    """Soft delete: the account stays but can no longer log in or refresh."""
    user_store: UserStore = request.app.state.user_store
    refresh_store: RefreshTokenStore = request.app.state.refresh_store
    _get_or_404(user_store, user_id)
    if user_id == principal.user_id:  # [M4]
        raise HTTPException(
            status_code=400,
            detail={"code": "self_deactivation", "message": "You cannot deactivate your own account."},
        )
    user_store.deactivate(user_id)
    refresh_store.revoke_all_for_user(user_id)
    return AccountResponse.from_account(_get_or_404(user_store, user_id))


@router.post("/users/{user_id}/unlock", response_model=MessageResponse)
def unlock_user(request: Request, user_id: str, principal: Principal = Depends(require_admin)) -> MessageResponse:
    user_store: UserStore = request.app.state.user_store
    _get_or_404(user_store, user_id)
    user_store.unlock(user_id)
    return MessageResponse(message="User unlocked successfully")


@router.post("/users/{user_id}/reset-password", response_model=MessageResponse)
def reset_password(
    request: Request,
    user_id: str,
    body: PasswordReset,
    principal: Principal = Depends(require_admin),
) -> MessageResponse:
    user_store: UserStore = request.app.state.user_store
    refresh_store: RefreshTokenStore = request.app.state.refresh_store
    _get_or_404(user_store, user_id)
    user_store.reset_password(user_id, hash_password(body.new_password, get_settings().bcrypt_rounds))
    refresh_store.revoke_all_for_user(user_id)
    return MessageResponse(message="Password reset successfully")
