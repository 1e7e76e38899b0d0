"""
api/gate.py -- RequestGate: the single choke point every HTTP request passes.

Pattern: Chain of Responsibility. The gate is an ordered list of guard stages.
Each stage looks at the request and either returns None (continue) or a
Response that ends the request right there. After the stages, the route
handler runs, and the response is post-processed.

Stage order (first terminating stage wins):
  0. CORS preflight on /api  -- allowed origin: 204, otherwise 403
  1. CSRF cookie             -- mint a token when the cookie is absent (never blocks)
  2. /api outside /api/auth  -- OPTIONS passes; no session: 401; mutating
                                method with a bad CSRF pair: 403
  3. /api/auth except login  -- mutating method with a bad CSRF pair: 403
  4. route handler           -- unhandled exception on /api: 500 envelope
  5. post-processing         -- security headers, CORS headers on /api,
                                CSRF cookie when minted in stage 1

Why auth routes skip stage 2: login, invitation acceptance and the cleanup
job must be reachable without a session; their handlers authenticate
themselves where needed.

Every 403 csrf_failed is also written to the audit sink as a FAILED ACCESS
event for the session owner (or "anonymous").

Collaborators are read from app.state on every request (sessions, csrf,
cors, audit, settings) so tests can swap them through the lifespan.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import Response

from audit.sink import audit_context
from auth.csrf import CSRF_COOKIE, CSRF_FAILED, CSRF_HEADER
from auth.dependencies import UNAUTHORIZED
from auth.sessions import SESSION_COOKIE

logger = logging.getLogger("backoffice.gate")

API_PREFIX = "/api"
AUTH_PREFIX = "/api/auth"
LOGIN_PATH = "/api/auth/login"

API_CSP = "default-src 'none'; frame-ancestors 'none'"
DEFAULT_CSP = "default-src 'self'; object-src 'none'; frame-ancestors 'none'; base-uri 'self'"
PERMISSIONS_POLICY = "camera=(), microphone=(), geolocation=()"
HSTS = "max-age=31536000; includeSubDomains"


def in_namespace(path: str, prefix: str) -> bool:
    """True for the prefix itself and anything below it ("/api/auth" does not match "/api/authors")."""
    return path == prefix or path.startswith(prefix + "/")


@dataclass
class GateContext:
    """Per-request state carried between stages and post-processing."""

    csrf_token: str = ""
    csrf_issued: bool = False


Stage = Callable[[Request, GateContext], Awaitable[Response | None]]


def _error(status_code: int, detail: dict) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": detail})


def _csrf_ok(request: Request) -> bool:
    return request.app.state.csrf.validate(request.cookies.get(CSRF_COOKIE), request.headers.get(CSRF_HEADER))


async def _csrf_denied(request: Request) -> JSONResponse:
    """Log, audit as a FAILED ACCESS event, and answer 403. The submitted token is never recorded."""
    logger.warning("CSRF validation failed: %s %s", request.method, request.url.path)
    session_ctx = getattr(request.state, "auth", None)
    event = audit_context(request, session_ctx.user if session_ctx is not None else None).event(
        "ACCESS",
        "Session",
        resource_name=f"{request.method} {request.url.path}",
        status="FAILED",
        error_message="CSRF validation failed",
    )
    await run_in_threadpool(request.app.state.audit.record, event)
    return _error(403, CSRF_FAILED)


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------


async def preflight_stage(request: Request, ctx: GateContext) -> Response | None:
    cors = request.app.state.cors
    if in_namespace(request.url.path, API_PREFIX) and cors.is_preflight(request):
        return cors.preflight_response(request)
    return None


async def csrf_cookie_stage(request: Request, ctx: GateContext) -> Response | None:
    ctx.csrf_token, ctx.csrf_issued = request.app.state.csrf.issue_if_absent(request.cookies)
    request.state.csrf_token = ctx.csrf_token
    return None


async def protected_api_stage(request: Request, ctx: GateContext) -> Response | None:
    path = request.url.path
    if not in_namespace(path, API_PREFIX) or in_namespace(path, AUTH_PREFIX):
        return None
    if request.method == "OPTIONS":
        return None

    session_ctx = await run_in_threadpool(request.app.state.sessions.validate, request.cookies.get(SESSION_COOKIE))
    if session_ctx is None:
        return _error(401, UNAUTHORIZED)
    request.state.auth = session_ctx

    if request.app.state.csrf.requires_validation(request.method) and not _csrf_ok(request):
        return await _csrf_denied(request)
    return None


async def auth_mutation_stage(request: Request, ctx: GateContext) -> Response | None:
    path = request.url.path
    if not in_namespace(path, AUTH_PREFIX) or path == LOGIN_PATH:
        return None
    if request.app.state.csrf.requires_validation(request.method) and not _csrf_ok(request):
        return await _csrf_denied(request)
    return None


DEFAULT_STAGES: tuple[Stage, ...] = (
    preflight_stage,
    csrf_cookie_stage,
    protected_api_stage,
    auth_mutation_stage,
)


# ---------------------------------------------------------------------------
# Post-processing
# ---------------------------------------------------------------------------


def apply_security_headers(response: Response, path: str, production: bool) -> Response:
    """Add the security header set without overwriting anything a route set itself."""
    headers = response.headers
    headers.setdefault("X-Content-Type-Options", "nosniff")
    headers.setdefault("X-Frame-Options", "DENY")
    headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    headers.setdefault("Permissions-Policy", PERMISSIONS_POLICY)
    headers.setdefault("Content-Security-Policy", API_CSP if in_namespace(path, API_PREFIX) else DEFAULT_CSP)
    if production:
        headers.setdefault("Strict-Transport-Security", HSTS)
    return response


class RequestGate:
    """HTTP middleware callable: app.middleware("http")(RequestGate())."""

    def __init__(self, stages: tuple[Stage, ...] = DEFAULT_STAGES) -> None:
        self.stages = stages

    async def __call__(self, request: Request, call_next) -> Response:
        ctx = GateContext()
        path = request.url.path

        response: Response | None = None
        for stage in self.stages:
            response = await stage(request, ctx)
            if response is not None:
                break

        if response is None:
            try:
                response = await call_next(request)
            except Exception:
                if not in_namespace(path, API_PREFIX):
                    raise
                logger.exception("Unhandled exception on %s %s", request.method, path)
                response = _error(500, {"code": "internal_error", "message": "An unexpected error occurred."})

        return self.finalize(request, response, ctx)

    @staticmethod
    def finalize(request: Request, response: Response, ctx: GateContext) -> Response:
        path = request.url.path
        apply_security_headers(response, path, request.app.state.settings.is_production)
        if in_namespace(path, API_PREFIX):
            request.app.state.cors.apply_headers(response, request)
        if ctx.csrf_issued:
            request.app.state.csrf.set_cookie(response, ctx.csrf_token)
        return response
