"""
api/main.py -- FastAPI application entry point for the authentication service.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. SessionMiddleware     -- OAuth state between login URL and callback

Lifespan builds the stores, the verification provider and the gate from
get_settings() on startup, and closes the stores on shutdown. A
ConfigurationError (e.g. delegated provider selected in strict mode without
credentials) aborts startup.

Extension points on app.state, set before startup by the host application:
  app.state.hooks   -- ordered list of before/after hooks (api/hooks.py)
  app.state.events  -- EventDispatcher; subscribe delivery handlers here
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime

import requests
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded as SlowAPIRateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import HealthResponse
from api.responses import failure, from_error
from api.routes.v1.auth import router as auth_router
from api.routes.v1.oauth import router as oauth_router
from api.routes.v1.password import router as password_router
from api.routes.v1.verification import router as verification_router
from auth.dependencies import get_current_user
from auth.models import User
from auth.oauth import oauth as oauth_client
from auth.store import UserStore
from core.config import VerificationConfig, get_settings
from verification.errors import AuthError
from verification.events import EventDispatcher
from verification.gate import VerificationGate
from verification.limiter import AttemptLimiter
from verification.providers import build_provider
from verification.store import VerificationStore, utcnow

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("userauth.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def wire_state(
    app: FastAPI,
    user_store: UserStore,
    verification_store: VerificationStore,
    config: VerificationConfig,
    limiter_storage_uri: str = "memory://",
    session: requests.Session | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> VerificationGate:
    """Build the verification components and attach them to app.state.

    Shared by the real lifespan and the test fixtures so both wire the gate
    the same way. Keeps an EventDispatcher already on app.state so handlers
    subscribed before startup survive.
    """
    events = getattr(app.state, "events", None) or EventDispatcher()
    attempts = AttemptLimiter(limiter_storage_uri)
    provider = build_provider(config, verification_store, events, session=session, clock=clock)
    gate = VerificationGate(config, provider, verification_store, attempts, user_store, events, clock=clock)

    app.state.user_store = user_store
    app.state.verification_store = verification_store
    app.state.attempt_limiter = attempts
    app.state.events = events
    app.state.provider = provider
    app.state.gate = gate
    return gate


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Purge expired and long-verified records every hour.

    Sends already clean expired rows opportunistically; this catches pairs
    that are never sent to again. CancelledError from task.cancel() during
    shutdown propagates out of asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(60 * 60)
        store: VerificationStore = app.state.verification_store
        expired = store.delete_expired()
        verified = store.delete_verified_older_than()
        if expired or verified:
            logger.info("Purged %d expired and %d stale verified record(s)", expired, verified)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup: stores -> provider -> gate -> purge task. Shutdown in reverse."""
    logger.info("User authentication API starting up")
    cfg = get_settings()
    user_store = UserStore(db_url=cfg.database_url)
    verification_store = VerificationStore(db_url=cfg.database_url)
    gate = wire_state(
        app,
        user_store,
        verification_store,
        cfg.verification_config(),
        limiter_storage_uri=cfg.rate_limit_storage_uri,
    )
    app.state.oauth = oauth_client
    logger.info(
        "Verification initialized (provider=%s, require_email=%s, require_phone=%s)",
        gate.provider.name,
        gate.config.require_email_verification,
        gate.config.require_phone_verification,
    )
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    verification_store.close()
    user_store.close()
    logger.info("User authentication API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="User Authentication API",
    description="Registration, login, social sign-in and contact verification codes.",
    version=VERSION,
    lifespan=lifespan,
    # Built-in docs are replaced by auth-protected routes below.
    docs_url=None,
    redoc_url=None,
)

app.state.hooks = []
app.state.events = EventDispatcher()

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    allow_credentials=True,
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# authlib keeps the OAuth state value in the session between the login URL
# and the callback; without it the callback cannot check state.
app.add_middleware(SessionMiddleware, secret_key=settings.secret_key, https_only=settings.secure_cookies)

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

app.include_router(auth_router, prefix=settings.route_prefix, tags=["Auth"])
app.include_router(verification_router, prefix=settings.route_prefix, tags=["Verification"])
app.include_router(password_router, prefix=settings.route_prefix, tags=["Password reset"])
if settings.register_oauth_routes:
    app.include_router(oauth_router, prefix=settings.route_prefix, tags=["OAuth"])


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(user: User = Depends(get_current_user)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="User Authentication API")


@app.get("/redoc", include_in_schema=False)
async def redoc(user: User = Depends(get_current_user)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="User Authentication API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the failure envelope so clients parse every error the
# same way regardless of status code.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Domain errors raised outside a route's own try block."""
    return from_error(exc)


@app.exception_handler(SlowAPIRateLimitExceeded)
async def rate_limit_handler(request: Request, exc: SlowAPIRateLimitExceeded) -> JSONResponse:
    """Per-route slowapi limit (login, verify-code, password reset). Retry-After in seconds."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = failure("Too many attempts, please try again later.", 429)
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
    return failure("Validation failed.", 422, errors)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    resp = failure(str(exc.detail), exc.status_code)
    if exc.headers:
        resp.headers.update(exc.headers)
    return resp


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The traceback goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return failure("An unexpected error occurred.", 500)


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined here (not in a router) so it is reachable regardless of router
# registration. No rate limit -- load balancer checks must not be throttled.
# ---------------------------------------------------------------------------


@app.get(f"{settings.route_prefix}/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return liveness, version and database reachability."""
    store: VerificationStore | None = getattr(request.app.state, "verification_store", None)
    database = "ok" if store is not None and store.ping() else "error"
    return HealthResponse(version=VERSION, components={"app": "ok", "database": database})
