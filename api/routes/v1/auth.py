"""
api/routes/v1/auth.py -- Login, token refresh, logout and identity endpoints.

Routes:
  POST /api/v1/auth/login     -- password login; sets access + refresh cookies
  POST /api/v1/auth/refresh   -- rotate the refresh token; resets both cookies
  POST /api/v1/auth/logout    -- revoke all refresh sessions; clears cookies
  GET  /api/v1/auth/me        -- current account (requires auth)

Security:
  [H2] POST /login is rate-limited per IP (LOGIN_RATE_LIMIT, default 10/minute).
  [C1] SessionIssuer.login() goes through CredentialVerifier, which equalizes
       timing for unknown emails. Never inline a lookup + bcrypt check here.
  [M5] Cache-Control: no-store on every response that carries tokens.

Handlers are plain `def` so FastAPI runs each request on its own worker
thread; bcrypt and database calls block that thread only.

AuthError subclasses raised by the issuer propagate to the handler in
api/main.py, which maps them to the error envelope.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import AccountResponse, LoginRequest, LoginResponse, MessageResponse, RefreshRequest, RefreshResponse
from auth.dependencies import ACCESS_COOKIE, REFRESH_COOKIE, get_current_principal, read_refresh_token
from auth.errors import UserNotFound
from auth.models import Principal
from auth.sessions import SessionIssuer
from auth.store import UserStore
from core.config import get_settings

# Auth policy:
# - POST /api/v1/auth/login:    public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/refresh:  refresh token (cookie or body), no access token
# - POST /api/v1/auth/logout:   requires auth (get_current_principal)
# - GET  /api/v1/auth/me:       requires auth (get_current_principal)
router = APIRouter()

REFRESH_COOKIE_PATH = "/api/v1/auth/refresh"


def _login_rate_limit() -> str:
    return get_settings().login_rate_limit


def _set_token_cookies(response: JSONResponse, access_token: str, refresh_token: str) -> None:
    """Write both tokens as httpOnly cookies.

    The refresh cookie is scoped to the refresh route so it is not sent on
    every API call. max_age mirrors each token's lifetime.
    """
    settings = get_settings()
    response.set_cookie(
        ACCESS_COOKIE,
        value=access_token,
        httponly=True,
        samesite="strict",
        secure=settings.secure_cookies,
        max_age=settings.jwt_access_expiration,
    )
    response.set_cookie(
        REFRESH_COOKIE,
        value=refresh_token,
        httponly=True,
        samesite="strict",
        secure=settings.secure_cookies,
        max_age=settings.jwt_refresh_expiration,
        path=REFRESH_COOKIE_PATH,
    )


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(_login_rate_limit)  # [H2] below @router so the registered endpoint is the rate-limited wrapper
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set token cookies.

    Unknown email, wrong password and inactive account all produce the same
    401 invalid_credentials. A locked account produces 403 account_locked
    with the lock expiry.
    """
    issuer: SessionIssuer = request.app.state.issuer
    result = issuer.login(body.email, body.password)

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=get_settings().jwt_access_expiration,
            user=AccountResponse.from_account(result.account),
        ).model_dump(mode="json"),
    )
    _set_token_cookies(resp, result.access_token, result.refresh_token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/refresh", response_model=RefreshResponse)
def refresh(request: Request, body: RefreshRequest | None = None) -> JSONResponse:
    """Exchange a refresh token for a new access/refresh pair.

    The refresh token is single-use: a second redemption fails with 401.
    """
    user_id, token = read_refresh_token(request, body.refresh_token if body else None)
    issuer: SessionIssuer = request.app.state.issuer
    pair = issuer.refresh(user_id, token)

    resp = JSONResponse(
        status_code=200,
        content=RefreshResponse(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type="bearer",  # noqa: S106 # nosec B106
            expires_in=get_settings().jwt_access_expiration,
        ).model_dump(mode="json"),
    )
    _set_token_cookies(resp, pair.access_token, pair.refresh_token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, principal: Principal = Depends(get_current_principal)) -> JSONResponse:
    """Revoke every refresh session of the caller and clear both cookies."""
    issuer: SessionIssuer = request.app.state.issuer
    issuer.logout(principal.user_id)
    resp = JSONResponse(content=MessageResponse(message="Logout successful").model_dump())
    resp.delete_cookie(ACCESS_COOKIE)
    resp.delete_cookie(REFRESH_COOKIE, path=REFRESH_COOKIE_PATH)
    return resp


@router.get("/auth/me", response_model=AccountResponse)
def me(request: Request, principal: Principal = Depends(get_current_principal)) -> AccountResponse:
    """Return the account behind the current access token."""
    user_store: UserStore = request.app.state.user_store
    account = user_store.get_by_id(principal.user_id)
    if account is None:
        raise UserNotFound()
    return AccountResponse.from_account(account)
