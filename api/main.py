"""
api/main.py -- FastAPI application entry point for AuthGate.

Exposes the authentication core (auth/) over HTTP: signup, two-step login
with an optional second factor, logout, and account security settings.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds every auth component once and shares it through app.state
(account store, token service, revocation store, challenge manager,
orchestrator). Shutdown cancels the revocation sweep and closes the DB
engine symmetrically.
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
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.challenges import ChallengeManager
from auth.delivery import EmailCodeDelivery, SmsCodeDelivery
from auth.errors import AuthError
from auth.revocation import TokenRevocationStore
from auth.session import AuthOrchestrator
from auth.store import AccountStore
from auth.tokens import TokenService
from core.config import get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authgate.api")

# ---------------------------------------------------------------------------
# Background revocation sweep
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Drop revocation entries older than the retention window, forever.

    Runs as a background asyncio task started in lifespan startup.
    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly. purge_older_than() only
    takes the store's lock per key, so request threads checking revocation
    are never blocked for the whole sweep.
    """
    settings = get_settings()
    while True:
        await asyncio.sleep(settings.revocation_sweep_interval_seconds)
        removed = app.state.revocations.purge_older_than(settings.revocation_retention_seconds)
        if removed:
            logger.info("Revocation sweep removed %d entries", removed)


# ---------------------------------------------------------------------------
# Lifespan -- startup / shutdown
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the auth components on startup and release them on shutdown.

    Startup order matters:
      1. Account store first -- the orchestrator and health check need it.
      2. Deliveries and challenge manager -- pure in-process objects.
      3. Purge task last -- references app.state.revocations.
    """
    settings = get_settings()
    logger.info("AuthGate API starting up")
    app.state.store = AccountStore(db_url=settings.database_url)
    app.state.tokens = TokenService.from_settings(settings)
    app.state.revocations = TokenRevocationStore()

    if settings.debug:
        # Unsent dev-mode messages are logged at DEBUG.
        logging.getLogger("authgate").setLevel(logging.DEBUG)
    email_delivery = EmailCodeDelivery.from_settings(settings)
    sms_delivery = SmsCodeDelivery.from_settings(settings)
    if not email_delivery.is_configured:
        logger.warning("SMTP_HOST not set -- email codes will be logged at DEBUG, not sent")
    if not sms_delivery.is_configured:
        logger.warning("SMS_GATEWAY_URL not set -- SMS codes will be logged at DEBUG, not sent")
    app.state.challenges = ChallengeManager.from_settings(settings, email_delivery, sms_delivery)

    app.state.orchestrator = AuthOrchestrator(
        app.state.store,
        app.state.challenges,
        app.state.tokens,
        app.state.revocations,
    )
    app.state.purge_task = asyncio.create_task(_purge_loop(app))
    logger.info(
        "Auth initialized (token lifetime %ds, revocation retention %ds)",
        settings.token_expire_seconds,
        settings.revocation_retention_seconds,
    )

    yield

    # Shutdown
    app.state.purge_task.cancel()
    app.state.store.close()
    logger.info("AuthGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="AuthGate API",
    description="Account signup, password login with optional second factor, and token revocation.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=get_settings().allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
#
# Captures wall-clock time around call_next so every response is logged with
# its latency. Never logs bodies or headers: both may carry codes or tokens.
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


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render an auth-core error with its public code and message only.

    exc.detail names the precise internal cause (unknown email, wrong
    password, expired code...). It is logged, never returned: returning it
    would undo the enumeration resistance of the error hierarchy [C1].
    """
    logger.info(
        "%s %s -> %s (%s: %s)",
        request.method,
        request.url.path,
        exc.code,
        type(exc).__name__,
        exc.detail or "-",
    )
    response = JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=exc.code,
                message=exc.public_message,
            )
        ).model_dump(),
    )
    if exc.status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc.detail),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation.

    Only field locations and messages are echoed back; submitted values are
    dropped because they may be passwords.
    """
    problems = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', 'invalid')}" for err in exc.errors()
    )
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=problems,
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for FastAPI/Starlette HTTP exceptions (404, 405...)."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
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
# Defined directly in main.py so it is always reachable regardless of router
# registration state. No rate limit -- load balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and database reachability."""
    components = {"app": "ok"}
    try:
        with request.app.state.store.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        components["database"] = "ok"
    except SQLAlchemyError:
        logger.warning("Health check: database unreachable", exc_info=True)
        components["database"] = "error"
    return HealthResponse(version=VERSION, components=components)
