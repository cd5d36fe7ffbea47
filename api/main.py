"""
api/main.py -- FastAPI application entry point for EventDesk.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware   -- the configured client origin, with credentials so
                         the browser sends the token cookies
  2. log_requests     -- one log line per request with latency

Lifespan owns every shared resource. It constructs the AuthStore, TokenCodec,
ProfileSync and AuthService once, hands them to routes through app.state, and
tears them down symmetrically on shutdown. Nothing is created at import time
except the app object itself.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.cookies import CookiePolicy, clear_auth_cookies
from auth.errors import AuthError
from auth.service import AuthService
from auth.store import AuthStore
from auth.tokens import TokenCodec
from core.config import get_settings
from replica.client import ReplicaClient
from replica.sync import ProfileSync

VERSION = "0.1.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.CRITICAL if _settings.disable_logging else logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("eventdesk.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Delete expired session rows every `interval` seconds.

    Lookups already ignore expired rows; this only keeps the table small.
    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            purged = await asyncio.to_thread(app.state.auth_store.purge_expired_sessions)
        except Exception:
            logger.exception("Session purge failed")
            continue
        if purged:
            logger.info("Purged %d expired sessions", purged)


def build_profile_sync(settings) -> ProfileSync:
    client = None
    if settings.convex_url:
        client = ReplicaClient(
            settings.convex_url,
            admin_key=settings.convex_admin_key,
            timeout=settings.replica_timeout_seconds,
        )
    return ProfileSync(client, production=settings.is_production)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Construct shared components on startup; release them on shutdown.

    Startup order: store first (everything depends on it), then codec and
    sync dispatcher, then the orchestrator, then the purge task which
    references the store.
    """
    settings = get_settings()
    logger.info("EventDesk API starting up (env=%s)", settings.app_env)
    app.state.auth_store = AuthStore(settings.database_url)
    logger.info("Auth store initialized")
    app.state.profile_sync = build_profile_sync(settings)
    if not app.state.profile_sync.enabled:
        logger.info("CONVEX_URL not set -- profile sync disabled")
    app.state.cookie_policy = CookiePolicy.from_settings(settings)
    app.state.auth_service = AuthService(
        app.state.auth_store,
        TokenCodec.from_settings(settings),
        app.state.profile_sync,
        bcrypt_rounds=settings.bcrypt_rounds,
    )
    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.session_purge_interval_seconds))

    yield

    app.state.purge_task.cancel()
    with suppress(asyncio.CancelledError):
        await app.state.purge_task
    app.state.profile_sync.shutdown(wait=False)
    app.state.auth_store.close()
    logger.info("EventDesk API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="EventDesk API",
    description="Account, session and token lifecycle for the EventDesk backend.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[_settings.client_url],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


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


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Translate the auth taxonomy to HTTP; expire cookies when the failure demands it."""
    if exc.status_code == 401:
        logger.info("Auth rejected on %s %s: %s", request.method, request.url.path, exc.message)
    resp = _error(exc.status_code, exc.code.value, exc.message)
    if exc.clear_cookies:
        clear_auth_cookies(resp, request.app.state.cookie_policy)
    return resp


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with a structured error when the body or query params fail validation.

    Password values are never echoed back: only location and message per error.
    """
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', '')}" for err in exc.errors()
    )
    return _error(400, "validation_error", "Request validation failed.", problems)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The traceback goes to the log only. Outside production the exception
    message is included as detail; in production the client sees only a
    generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    detail = None if get_settings().is_production else str(exc)
    return _error(500, "internal_error", "An unexpected error occurred.", detail)


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness and database connectivity. No authentication required."""
    db_ok = await asyncio.to_thread(request.app.state.auth_store.ping)
    return HealthResponse(
        version=VERSION,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )
