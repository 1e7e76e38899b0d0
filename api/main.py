"""
api/main.py -- FastAPI application entry point for the backoffice API.

Run with:  python main.py serve
           uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests  -- method, path, status, latency, client for every request
  2. RequestGate   -- CORS preflight, CSRF cookie, session + CSRF enforcement,
                      security/CORS headers (see api/gate.py)

Lifespan builds every collaborator once and hangs it on app.state, where the
gate, the dependencies and the routes look it up. Tests replace the lifespan
and call configure_state() with in-memory stores.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from api.cors import CorsConfig, CorsPolicy
from api.gate import RequestGate
from api.limiter import RateLimiter, RateLimitPolicies
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.admin import router as admin_router
from api.routes.auth import router as auth_router
from api.routes.invitations import router as invitations_router
from api.routes.sessions import router as sessions_router
from api.routes.users import router as users_router
from audit.sink import AuditSink
from audit.store import AuditStore
from auth.csrf import CsrfGuard
from auth.dependencies import get_session_context
from auth.invitations import InvitationService
from auth.mailer import InvitationMailer
from auth.models import SessionContext
from auth.sessions import SessionManager
from auth.store import AuthStore
from core.clock import Clock, utcnow
from core.config import Settings, get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("backoffice.api")


# ---------------------------------------------------------------------------
# State wiring
# ---------------------------------------------------------------------------


def configure_state(
    app: FastAPI,
    settings: Settings,
    store: AuthStore,
    audit_store: AuditStore,
    clock: Clock = utcnow,
    mailer: InvitationMailer | None = None,
) -> None:
    """Build every request-path collaborator and attach it to app.state."""
    app.state.settings = settings
    app.state.store = store
    app.state.audit_store = audit_store
    app.state.audit = AuditSink(audit_store, clock=clock)
    app.state.sessions = SessionManager(store, settings.secret_key, settings.session_ttl_seconds, clock=clock)
    app.state.csrf = CsrfGuard(settings.secret_key, settings.secure_cookies, settings.csrf_ttl_seconds)
    app.state.cors = CorsPolicy(CorsConfig.from_settings(settings))
    app.state.limiter = RateLimiter(settings.rate_limit_storage_uri)
    app.state.rate_limits = RateLimitPolicies.from_settings(settings)
    app.state.invitations = InvitationService(
        store, settings.secret_key, settings.invite_expiration_days, clock=clock
    )
    app.state.mailer = mailer or InvitationMailer(settings.resend_api_key, settings.resend_from)


# ---------------------------------------------------------------------------
# Background tasks
# ---------------------------------------------------------------------------


async def _cleanup_loop(app: FastAPI, interval: int) -> None:
    """Purge expired sessions and invitations on a fixed interval."""
    while True:
        await asyncio.sleep(interval)
        try:
            sessions = await run_in_threadpool(app.state.sessions.cleanup_expired)
            invitations = await run_in_threadpool(app.state.invitations.cleanup_expired)
        except Exception:
            logger.exception("Scheduled cleanup failed")
            continue
        logger.info("Scheduled cleanup: %d session(s), %d invitation(s) removed", sessions, invitations)


def _start_tasks(app: FastAPI, settings: Settings) -> list[asyncio.Task]:
    tasks: list[asyncio.Task] = []
    if settings.session_cleanup_interval_seconds > 0:
        tasks.append(asyncio.create_task(_cleanup_loop(app, settings.session_cleanup_interval_seconds)))
    return tasks


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the stores, wire app.state, start background tasks; undo all of it on shutdown."""
    settings = get_settings()
    logger.info("Backoffice API starting up (environment=%s)", settings.environment)

    store = AuthStore(settings.database_url)
    audit_store = AuditStore(settings.database_url)
    configure_state(app, settings, store, audit_store)
    if not store.has_users():
        logger.warning("No users exist yet. Seed the first account with: python main.py create-admin")
    if not app.state.mailer.enabled:
        logger.info("RESEND_API_KEY not set; invitation links will be logged instead of emailed")

    app.state.background_tasks = _start_tasks(app, settings)

    yield

    for task in app.state.background_tasks:
        task.cancel()
    await asyncio.gather(*app.state.background_tasks, return_exceptions=True)
    store.close()
    audit_store.close()
    logger.info("Backoffice API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Backoffice API",
    description="Authentication, sessions and user administration for the CMS backoffice.",
    version=VERSION,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced below with session-protected routes.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Each @app.middleware("http") registration wraps everything registered
# before it, so the last one registered is the outermost. The gate goes
# first so that request logging also sees the requests the gate rejects.
# ---------------------------------------------------------------------------

app.middleware("http")(RequestGate())


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
app.include_router(sessions_router, prefix="/api", tags=["Sessions"])
app.include_router(users_router, prefix="/api", tags=["Users"])
app.include_router(invitations_router, prefix="/api", tags=["Invitations"])
app.include_router(admin_router, prefix="/api", tags=["Admin"])


# ---------------------------------------------------------------------------
# Session-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(session_ctx: SessionContext = Depends(get_session_context)):
    """Swagger UI -- requires a session."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="Backoffice API")


@app.get("/redoc", include_in_schema=False)
async def redoc(session_ctx: SessionContext = Depends(get_session_context)):
    """ReDoc UI -- requires a session."""
    return get_redoc_html(openapi_url="/openapi.json", title="Backoffice API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail="; ".join(str(e.get("msg", "")) for e in exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with a dict detail. When detail is
    already a structured dict, use it directly as the error field rather than
    stringifying it -- str(dict) produces a Python repr, not JSON.
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
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors outside /api.

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
# Outside /api so the gate never asks for a session. No rate limit --
# load balancer checks must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, current version and a database round-trip check."""
    components = {"app": "ok"}
    try:
        request.app.state.store.has_users()
        components["database"] = "ok"
    except Exception:
        logger.exception("Health check database round-trip failed")
        components["database"] = "error"
    return HealthResponse(version=VERSION, components=components)
