"""
api/main.py -- FastAPI application entry point for ResourceHub auth.

Exposes the identity and access-control core over HTTP. Resource, forum and
search services are separate collaborators that call into the same auth/
package; they are not mounted here.

Run with:      uvicorn asgi:app --reload

Lifespan builds the stores, hasher, token issuer and AccountService once
from Settings and parks them on app.state. Route handlers and dependencies
read them from there, so tests can swap in isolated stores by replacing the
lifespan.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.ephemeral import EphemeralTokenStore
from auth.errors import AuthError
from auth.lifecycle import AccountService
from auth.models import TokenKind
from auth.passwords import PasswordHasher
from auth.store import UserStore
from auth.tokens import SessionTokens
from core.config import Settings, get_settings

__version__ = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("resourcehub.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Delete expired single-use tokens every `interval` seconds.

    consume() already rejects expired rows on its own; this only keeps the
    table from growing. CancelledError from task.cancel() during shutdown
    propagates out of asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(app.state.ephemeral_tokens.purge_expired)
        except Exception:
            logger.exception("Expired token purge failed")


def build_services(app: FastAPI, settings: Settings) -> None:
    """Construct the auth components from settings and attach them to app.state."""
    timeout = settings.storage_timeout_seconds
    app.state.settings = settings
    app.state.user_store = UserStore(settings.database_url, timeout=timeout)
    app.state.ephemeral_tokens = EphemeralTokenStore(
        settings.database_url,
        settings.secret_key,
        timeout=timeout,
        ttls={
            TokenKind.verification: settings.verification_token_ttl_seconds,
            TokenKind.password_reset: settings.password_reset_token_ttl_seconds,
            TokenKind.refresh: settings.refresh_token_ttl_seconds,
        },
    )
    app.state.session_tokens = SessionTokens(settings.secret_key, default_ttl=settings.token_expire_seconds)
    app.state.hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    app.state.accounts = AccountService(
        app.state.user_store,
        app.state.session_tokens,
        app.state.ephemeral_tokens,
        app.state.hasher,
    )


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime."""
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())
    logger.info("ResourceHub auth API starting up")
    build_services(app, settings)
    logger.info("Auth initialized (has_users=%s)", app.state.user_store.has_users())

    purge_task = None
    if settings.token_purge_interval_seconds > 0:
        purge_task = asyncio.create_task(_purge_loop(app, settings.token_purge_interval_seconds))

    yield

    # Shutdown
    if purge_task is not None:
        purge_task.cancel()
    app.state.ephemeral_tokens.close()
    app.state.user_store.close()
    logger.info("ResourceHub auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="ResourceHub Auth API",
    description="Registration, login, sessions and role-based access control for ResourceHub.",
    version=__version__,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Wall-clock time before and after call_next gives per-request
# latency. Authorization headers and bodies are never logged.
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

app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(users_router, prefix="/api", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope
#   {"success": false, "message": ..., "error": {"code", "message", "detail"}}
# so API clients can parse errors uniformly.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            message=message,
            error=ErrorDetail(code=code, message=message, detail=detail),
        ).model_dump(),
        headers={"Cache-Control": "no-store"},
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map a domain error to its status code and stable error code."""
    if exc.status_code >= 500:
        logger.error("Internal auth error on %s %s: %s", request.method, request.url.path, exc.message)
        detail = exc.message if request.app.state.settings.debug else None
        return _error_response(exc.status_code, exc.code, "An unexpected error occurred.", detail)
    return _error_response(exc.status_code, exc.code, exc.message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with a structured error when the request body or params fail validation."""
    return _error_response(400, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for FastAPI/Starlette HTTP exceptions (404 route, 405, ...)."""
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The traceback goes to the log only. The response carries the exception
    text only when DEBUG=true.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    settings = getattr(request.app.state, "settings", None)
    detail = str(exc) if settings is not None and settings.debug else None
    return _error_response(500, "internal_error", "An unexpected error occurred.", detail)


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/health", include_in_schema=True, tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=__version__)
