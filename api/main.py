"""
api/main.py -- FastAPI application entry point for AccessDesk.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (schema, seed data, bootstrap admin, purge task)
and shutdown (cancel purge task, dispose engine) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
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
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, FieldError, HealthResponse
from api.routes.v1.activities import router as activities_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.dashboard import router as dashboard_router
from api.routes.v1.groups import router as groups_router
from api.routes.v1.permissions import router as permissions_router
from api.routes.v1.users import router as users_router
from audit.store import ActivityLog
from auth.models import ADMIN_GROUP_ID, User
from auth.passwords import hash_password
from auth.recovery import PasswordResetStore
from auth.sessions import SessionStore
from auth.store import UserStore
from core.config import get_settings

_VERSION = "0.1.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=_settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("accessdesk.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Purge expired sessions and spent reset tokens every hour.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(60 * 60)
        sessions = app.state.session_store.purge_expired()
        resets = app.state.reset_store.purge_expired()
        if sessions or resets:
            logger.info("Purged %d expired session(s) and %d reset token(s)", sessions, resets)


# ---------------------------------------------------------------------------
# First-run bootstrap
# ---------------------------------------------------------------------------


def _bootstrap_admin(user_store: UserStore) -> None:
    """Create the first admin account when the store has no users.

    The password comes from BOOTSTRAP_ADMIN_PASSWORD and is hashed like any
    other. In DEBUG mode a random password is generated and logged once;
    in production a missing password only produces a warning.
    """
    if user_store.has_users():
        return
    password = _settings.bootstrap_admin_password
    generated = False
    if not password:
        if not _settings.debug:
            logger.warning("No users exist and BOOTSTRAP_ADMIN_PASSWORD is not set -- no admin account created")
            return
        password = secrets.token_urlsafe(12)
        generated = True
    admin = User(
        username=_settings.bootstrap_admin_username,
        email=_settings.bootstrap_admin_email.lower(),
        hashed_password=hash_password(password),
        first_name="System",
        last_name="Administrator",
        group_id=ADMIN_GROUP_ID,
    )
    try:
        user_store.create_user(admin)
    except IntegrityError:
        # Another worker bootstrapped first.
        logger.info("Bootstrap admin already exists")
        return
    if generated:
        logger.warning(
            "Created bootstrap admin %r with generated password %s (DEBUG only -- change it)",
            admin.username,
            password,
        )
    else:
        logger.info("Created bootstrap admin %r", admin.username)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. The session, reset, and activity stores share the user store's
    engine, so all entities live in one database.
    """
    logger.info("AccessDesk API starting up")
    user_store = UserStore(db_url=_settings.database_url) if _settings.database_url else UserStore()
    if user_store.seed_defaults():
        logger.info("Seeded default groups and permissions")
    _bootstrap_admin(user_store)
    app.state.user_store = user_store
    app.state.session_store = SessionStore(user_store.engine)
    app.state.reset_store = PasswordResetStore(user_store.engine)
    app.state.activity_log = ActivityLog(user_store.engine)
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.user_store.close()
    logger.info("AccessDesk API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="AccessDesk API",
    description="User, group, and permission administration with an activity audit trail.",
    version=_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    # The session travels in a cookie, so browsers must be allowed to send it.
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type"],
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
app.include_router(groups_router, prefix="/api/v1", tags=["Groups"])
app.include_router(permissions_router, prefix="/api/v1", tags=["Permissions"])
app.include_router(activities_router, prefix="/api/v1", tags=["Activities"])
app.include_router(dashboard_router, prefix="/api/v1", tags=["Dashboard"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(exclude_none=True),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with field-level detail when a body, path, or query value fails validation."""
    fields = [
        FieldError(
            field=".".join(str(part) for part in err.get("loc", ()) if part != "body") or "body",
            message=err.get("msg", "Invalid value."),
        )
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                fields=fields,
            )
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for all HTTP exceptions, including auth.errors.ApiError.

    ApiError carries a structured dict as detail; use it directly as the
    error field. Plain Starlette exceptions (e.g. routing 404/405) get a
    generic code derived from the status.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(exclude_none=True),
        headers=exc.headers,
    )


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
        ).model_dump(exclude_none=True),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is reachable regardless of router state.
# No rate limit and no auth -- load balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version, and a database round-trip check."""
    try:
        db_status = "ok" if request.app.state.user_store.ping() else "error"
    except SQLAlchemyError:
        logger.exception("Health check database ping failed")
        db_status = "error"
    return HealthResponse(
        status="healthy",
        version=_VERSION,
        components={"app": "ok", "database": db_status},
    )
