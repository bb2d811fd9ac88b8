"""
api/main.py -- FastAPI application entry point for appy.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware     -- adds CORS headers and exposes the rotated-token headers
  2. SlowAPIMiddleware  -- shares api.limiter; per-route limits run in the route wrappers

Lifespan resolves Settings once and wires the store, mailer, and settings into
app.state. Every route reads its collaborators from app.state; nothing looks
configuration up globally at request time.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import configure_limits, limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.login import router as login_router
from auth.dependencies import ACCESS_TOKEN_HEADER, REFRESH_TOKEN_HEADER
from auth.errors import AuthError
from auth.store import AuthStore
from core.config import get_settings
from core.constants import UserRole
from mailer.mailer import Mailer

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("appy.api")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Resolve configuration and open the store for the server lifetime.

    Startup order matters:
      1. Settings first -- the store URL, mailer, and every auth component
         depend on it.
      2. Store second, then the built-in roles are seeded so registration
         and scope resolution always find them.
      3. Mailer last.
    """
    settings = get_settings()
    app.state.settings = settings
    configure_limits(settings)
    logger.info("appy API starting up (auth_strategy=%s)", settings.auth_strategy.value)
    app.state.store = AuthStore(settings.database_url)
    app.state.store.ensure_roles([role.value for role in UserRole])
    app.state.mailer = Mailer(settings)
    logger.info("Mailer initialized (smtp configured=%s)", app.state.mailer.is_configured)

    yield

    app.state.store.close()
    logger.info("appy API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="appy API",
    description="User login, session and token issuance, and password reset.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them: CORS -> SlowAPI.
# Browsers only let scripts read X-Access-Token / X-Refresh-Token if they are
# listed in expose_headers.
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:8080", "http://127.0.0.1"],
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "Authorization", ACCESS_TOKEN_HEADER, REFRESH_TOKEN_HEADER],
    expose_headers=[ACCESS_TOKEN_HEADER, REFRESH_TOKEN_HEADER],
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

app.include_router(login_router, tags=["Login"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every error leaves in the same {"error": {"code", "message"}} envelope. The
# client's retry logic keys on error.message, so messages must stay exact.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Return the AuthError's status with its client-safe message.

    InfrastructureError messages are always generic; the cause was already
    logged where it was caught.
    """
    if exc.status_code == 401:
        logger.info("Rejected credentials on %s %s: %s", request.method, request.url.path, exc.message)
    return _error_response(exc.status_code, exc.code, exc.message)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 from slowapi. The abuse throttle's lockout is a separate 400."""
    response = _error_response(429, "rate_limited", "Too many requests.", detail=str(exc.detail))
    response.headers["Retry-After"] = "60"
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """422 naming the offending fields, e.g. "body.email, body.pin"."""
    fields = ", ".join(".".join(str(part) for part in err.get("loc", ())) for err in exc.errors())
    return _error_response(422, "validation_error", "Request validation failed.", detail=fields or None)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for errors raised outside the login and reset pipelines.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is always reachable regardless of router
# registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/health", include_in_schema=True, tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=__version__)
