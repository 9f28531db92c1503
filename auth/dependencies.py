"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The access token is read from, in priority order:
  1. the "access_token" cookie set by POST /auth/login and /auth/refresh
  2. an Authorization: Bearer <token> header

It is verified with the access TokenCodec held on app.state and turned into a
typed Principal that route handlers receive as an explicit parameter.

get_current_principal() raises HTTP 401 on a missing, invalid or expired
token. require_admin() additionally raises HTTP 403 for non-ADMIN roles.
read_refresh_token() is the refresh-side counterpart: it extracts the raw
refresh token and verifies it with the refresh codec.

Layer rule: may import fastapi (this module is part of the FastAPI dependency
injection system) but nothing from api/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.errors import AuthError
from auth.models import Principal, Role
from auth.tokens import TokenCodec

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"


def _unauthorized(exc: AuthError) -> HTTPException:
    return HTTPException(status_code=401, detail={"code": exc.code, "message": exc.message})


def _bearer(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]
    return None


def get_current_principal(request: Request) -> Principal:
    """Require a valid access token. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: Principal = Depends(get_current_principal)): ...
    """
    token = request.cookies.get(ACCESS_COOKIE) or _bearer(request)
    if not token:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    codec: TokenCodec = request.app.state.access_codec
    try:
        claims = codec.verify(token)
        return Principal(
            user_id=claims["sub"],
            email=claims["email"],
            role=Role(claims["role"]),
            session_id=claims["sessionId"],
        )
    except AuthError as exc:
        raise _unauthorized(exc) from exc
    except (KeyError, ValueError) as exc:
        raise HTTPException(
            status_code=401,
            detail={"code": "token_invalid", "message": "Invalid token."},
        ) from exc


def require_admin(request: Request) -> Principal:
    """Require the ADMIN role. Raises HTTP 401 if unauthenticated, HTTP 403 otherwise."""
    principal = get_current_principal(request)
    if principal.role is not Role.ADMIN:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return principal


def read_refresh_token(request: Request, body_token: str | None = None) -> tuple[str, str]:
    """Return (user_id, raw_refresh_token) for a refresh request.

    A token supplied in the request body wins over the cookie, so a stale
    cookie never shadows an explicit token. Raises HTTP 401 if neither is
    present or the token does not verify.
    """
    token = body_token or request.cookies.get(REFRESH_COOKIE)
    if not token:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Refresh token required."},
        )
    codec: TokenCodec = request.app.state.refresh_codec
    try:
        claims = codec.verify(token)
    except AuthError as exc:
        raise _unauthorized(exc) from exc
    user_id = claims.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise HTTPException(
            status_code=401,
            detail={"code": "token_invalid", "message": "Invalid token."},
        )
    return user_id, token
