"""
api/main.py -- FastAPI application entry point for ClinicAuth.

Run with:  uvicorn asgi:app --reload
           python main.py serve

Middleware stack (outermost to innermost):
  1. CORSMiddleware    -- adds CORS headers for allowed browser origins
  2. SlowAPIMiddleware -- enforces per-route rate limits from api.limiter

Lifespan builds the auth object graph once from Settings and stores it on
app.state: user_store, refresh_store, access_codec, refresh_codec, issuer.
The signing key is read from Settings here and passed explicitly to the
codecs and the refresh store -- nothing downstream looks it up globally.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.engine import Engine
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.errors import AuthError
from auth.lockout import LockoutPolicy
from auth.seed import seed_default_users
from auth.sessions import SessionIssuer
from auth.store import RefreshTokenStore, UserStore, make_engine
from auth.tokens import ACCESS, REFRESH, TokenCodec
from auth.verifier import CredentialVerifier
from core.config import Settings, get_settings

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("clinicauth.api")


# ---------------------------------------------------------------------------
# Object graph
# ---------------------------------------------------------------------------


def init_auth(app: FastAPI, settings: Settings, engine: Engine) -> None:
    """Wire stores, codecs, verifier and issuer onto app.state.

    Used by the lifespan below and by the test suite with an in-memory engine.
    """
    user_store = UserStore(engine=engine)
    refresh_store = RefreshTokenStore(settings.jwt_secret, engine=engine)
    access_codec = TokenCodec(settings.jwt_secret, settings.access_ttl, ACCESS)
    refresh_codec = TokenCodec(settings.jwt_secret, settings.refresh_ttl, REFRESH)
    policy = LockoutPolicy(max_attempts=settings.max_login_attempts, lockout_duration=settings.lockout_duration)
    verifier = CredentialVerifier(user_store, policy, bcrypt_rounds=settings.bcrypt_rounds)

    app.state.user_store = user_store
    app.state.refresh_store = refresh_store
    app.state.access_codec = access_codec
    app.state.refresh_codec = refresh_codec
    app.state.issuer = SessionIssuer(
        verifier,
        user_store,
        refresh_store,
        access_codec,
        refresh_codec,
        secret_key=settings.jwt_secret,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the auth graph on startup; dispose the engine on shutdown."""
    settings = get_settings()
    logger.info("ClinicAuth API starting up")
    engine = make_engine(settings.database_url)
    init_auth(app, settings, engine)
    if settings.seed_default_users:
        created = seed_default_users(app.state.user_store, rounds=settings.bcrypt_rounds)
        logger.info("Seeded %d default account(s)", len(created))
    logger.info(
        "Auth initialized (max_login_attempts=%d, lockout=%dm)",
        settings.max_login_attempts,
        settings.lockout_duration_minutes,
    )

    yield

    engine.dispose()
    logger.info("ClinicAuth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="ClinicAuth API",
    description="Credential verification and session token rotation for the clinic application.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map the auth error taxonomy onto HTTP statuses (401/403/404/409/500)."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s", exc.code, request.method, request.url.path, exc_info=exc.__cause__)
    response = JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=exc.code, message=exc.message, detail=exc.detail or None)
        ).model_dump(),
    )
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 for POST /auth/login over LOGIN_RATE_LIMIT. Retry-After is the limit window."""
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(code="rate_limited", message="Too many requests.", detail=exc.detail)
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(exc.limit.limit.get_expiry())
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # errors() may carry the raw ValueError in ctx; only loc and msg are serialized.
    fields = [{"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]} for err in exc.errors()]
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail={"fields": fields},
            )
        ).model_dump(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Envelope for HTTPException.

    auth/dependencies.py and the users routes raise with a {"code", "message"}
    dict, passed through as-is. Routing 404/405 carry a plain string.
    """
    if isinstance(exc.detail, dict):
        error = exc.detail
    else:
        error = ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail)).model_dump()
    return JSONResponse(status_code=exc.status_code, content={"error": error}, headers=exc.headers)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit -- health checks from load balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and a database round-trip check."""
    database_ok = request.app.state.user_store.ping()
    return HealthResponse(
        version=VERSION,
        components={"app": "ok", "database": "ok" if database_ok else "error"},
    )
