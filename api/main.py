"""
api/main.py -- FastAPI application entry point for the LabLive auth service.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware        -- adds CORS headers for the configured browser origins
  2. SlowAPIMiddleware     -- enforces the global rate-limit class from api.limiter

Lifespan builds the identity components once per process and hangs them on
app.state:
  app.state.auth            AuthService (users, hasher, tokens, policy, mfa, mailer)
  app.state.password_reset  PasswordResetLifecycle
  app.state.reset_tokens    ResetTokenStore (purged of expired rows hourly)

Every failure leaves the API as {"error": {"code", "message", "detail"?}}.
"""

from __future__ import annotations

import asyncio
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
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter, retry_after_seconds
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.errors import AuthError, RateLimited
from auth.reset import PasswordResetLifecycle
from auth.service import AuthService
from auth.store import ResetTokenStore, UserStore
from core.config import get_settings

APP_VERSION = "1.0.0"

settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("lablive.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------

_PURGE_INTERVAL_SECONDS = 60 * 60


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired password-reset tokens once an hour.

    Expired tokens are already rejected on use; this only keeps the table
    small. CancelledError from shutdown unwinds the loop out of asyncio.sleep.
    """
    while True:
        await asyncio.sleep(_PURGE_INTERVAL_SECONDS)
        removed = app.state.reset_tokens.purge_expired()
        if removed:
            logger.info("Purged %d expired reset tokens", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the identity components on startup, release them on shutdown.

    The user store comes first: the reset-token store shares its engine and
    every other component reads users through it.
    """
    logger.info("LabLive auth API starting up")
    user_store = UserStore(settings.database_url)
    reset_tokens = ResetTokenStore(user_store.engine)
    auth = AuthService.from_settings(settings, user_store)
    app.state.auth = auth
    app.state.reset_tokens = reset_tokens
    app.state.password_reset = PasswordResetLifecycle(
        users=user_store,
        tokens=reset_tokens,
        hasher=auth.hasher,
        policy=auth.policy,
        mailer=auth.mailer,
        frontend_url=settings.frontend_url,
        ttl_seconds=settings.reset_token_ttl_seconds,
    )
    if not user_store.has_users():
        logger.warning("No users exist yet -- create one with: python main.py create-admin EMAIL PASSWORD")
    if not auth.mailer.is_configured:
        logger.warning("SMTP_HOST not set -- reset links and sign-in codes will not be delivered")
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    user_store.close()
    limiter.reset()
    logger.info("LabLive auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="LabLive Auth API",
    description="Identity and access control: registration, login, TOTP MFA and password reset.",
    version=APP_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["Content-Type", "Authorization"],
    expose_headers=["Retry-After"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


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


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(
            exclude_none=True
        ),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    response = _error_response(exc.status_code, exc.code, exc.message, exc.detail)
    if isinstance(exc, RateLimited):
        response.headers["Retry-After"] = str(exc.retry_after)
    return response


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After when either rate-limit class is exhausted.

    Must stay a plain def: SlowAPIMiddleware calls this handler without
    awaiting it when the global class rejects a request.
    """
    limited = RateLimited(retry_after_seconds(request))
    logger.warning(
        "Rate limit exceeded (%s) on %s from %s",
        exc.detail,
        request.url.path,
        request.client.host if request.client else "unknown",
    )
    response = _error_response(limited.status_code, limited.code, limited.message, str(exc.detail))
    response.headers["Retry-After"] = str(limited.retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies are reported as 400 validation_failed, like policy violations."""
    fields = sorted({".".join(str(p) for p in err.get("loc", ())[1:]) or "body" for err in exc.errors()})
    return _error_response(400, "validation_failed", "Request validation failed.", ", ".join(fields))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Structured error for routing-level HTTP exceptions (unknown path, wrong method)."""
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined here rather than in a router so it is reachable regardless of
# router registration state.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=APP_VERSION)
