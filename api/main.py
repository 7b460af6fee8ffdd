"""
api/main.py -- FastAPI application entry point for Canvas Auth.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost; Starlette wraps each newly added
middleware around the ones added before it, so registration order is reversed):
  1. CORSMiddleware     -- adds CORS headers for allowed browser origins
  2. log_requests       -- one log line per request with latency
  3. SlowAPIMiddleware  -- enforces per-route rate limits from api.limiter

Lifespan builds the identity core (store, hasher, tokens, sessions, auth
gate) onto app.state at startup and releases the pool and worker threads on
shutdown.
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
from starlette.exceptions import HTTPException

from api.limiter import limiter
from api.models import Envelope, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.dependencies import AuthMiddleware
from auth.errors import AuthError, StoreUnavailableError
from auth.passwords import PasswordHasher
from auth.sessions import SessionService
from auth.store import UserStore
from auth.tokens import TokenService
from core.config import Settings, get_settings

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("canvasauth.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_services(app: FastAPI, settings: Settings, store: UserStore) -> None:
    """Attach the identity core to app.state.

    Kept separate from lifespan so tests can wire an isolated store without
    re-implementing the dependency graph.
    """
    tokens = TokenService(settings.token_config())
    hasher = PasswordHasher(rounds=settings.bcrypt_rounds, workers=settings.hash_workers)
    app.state.user_store = store
    app.state.hasher = hasher
    app.state.tokens = tokens
    app.state.sessions = SessionService(store, hasher, tokens)
    app.state.auth_gate = AuthMiddleware(tokens, store)


def release_services(app: FastAPI) -> None:
    app.state.hasher.close()
    app.state.user_store.close()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.
    """
    settings = get_settings()
    logger.info("Canvas Auth starting up")
    store = UserStore(
        settings.database_url,
        pool_size=settings.db_pool_size,
        pool_timeout=settings.db_pool_timeout,
        statement_timeout=settings.db_statement_timeout,
    )
    build_services(app, settings, store)
    logger.info(
        "Identity core initialized (pool_size=%d, bcrypt_rounds=%d, access_ttl=%s, refresh_ttl=%s)",
        settings.db_pool_size,
        settings.bcrypt_rounds,
        settings.jwt_expires_in,
        settings.jwt_refresh_expires_in,
    )

    yield

    release_services(app)
    logger.info("Canvas Auth shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Canvas Auth API",
    description="Account signup, login and session tokens for Canvas AI services.",
    version=_settings.app_version,
    lifespan=lifespan,
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


# Added last so it wraps everything above, 429s and error responses included.
app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same Envelope so API clients can parse errors
# uniformly. Response bodies carry only the fixed public message of each
# error class; details go to the server log.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render any identity-core failure.

    5xx failures are logged at ERROR with the traceback; 4xx at INFO with the
    internal detail so operators can tell an expired token from a stale one.
    """
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.detail, exc_info=exc)
    else:
        logger.info("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.detail)
    envelope = Envelope(success=False, message=exc.message, errors=getattr(exc, "errors", None) or None)
    response = JSONResponse(status_code=exc.status_code, content=envelope.dump())
    if isinstance(exc, StoreUnavailableError):
        response.headers["Retry-After"] = str(exc.retry_after)
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=Envelope(success=False, message="Too many requests").dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with a per-field error list when the body or query fails validation.

    Only location, message and type are echoed back; the rejected input value
    is dropped so a password never round-trips into a response.
    """
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", ""),
            "type": err.get("type", ""),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=Envelope(success=False, message="Validation errors", errors=errors).dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Wrap Starlette HTTP exceptions (and FastAPI's subclass) (404, 405, ...) in the envelope."""
    return JSONResponse(
        status_code=exc.status_code,
        content=Envelope(success=False, message=str(exc.detail)).dump(),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=Envelope(success=False, message="Internal server error").dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is always reachable regardless of router
# registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return liveness, version, and credential-store reachability."""
    store: UserStore = request.app.state.user_store
    try:
        await asyncio.to_thread(store.ping)
        database = "ok"
    except StoreUnavailableError:
        database = "error"
    status = "healthy" if database == "ok" else "degraded"
    return HealthResponse(status=status, version=_settings.app_version, components={"app": "ok", "database": database})
