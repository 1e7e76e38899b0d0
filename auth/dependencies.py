"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The session cookie ("cms_session") is the only credential. RequestGate has
usually validated it already and left the SessionContext on
request.state.auth; routes outside the gated namespace (/api/auth/*) fall
back to validating the cookie here.

try_get_session() is the soft variant (returns None on failure).
get_session_context() wraps it and raises HTTP 401 if unauthenticated.
require_role() / require_super_admin() add HTTP 403 for the wrong role.

Layer rule: no imports from api/ or audit/.
  auth/dependencies.py may import from fastapi (for Depends/HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.models import SessionContext
from auth.sessions import SESSION_COOKIE

UNAUTHORIZED = {"code": "unauthorized", "message": "Authentication required."}


def get_client_ip(request: Request) -> str | None:
    """First hop of X-Forwarded-For, else X-Real-Ip, else None."""
    forwarded = request.headers.get("x-forwarded-for", "")
    first = forwarded.split(",")[0].strip()
    if first:
        return first
    return request.headers.get("x-real-ip") or None


def try_get_session(request: Request) -> SessionContext | None:
    """Return the validated session for this request, or None. Never raises."""
    ctx = getattr(request.state, "auth", None)
    if ctx is not None:
        return ctx
    ctx = request.app.state.sessions.validate(request.cookies.get(SESSION_COOKIE))
    if ctx is not None:
        request.state.auth = ctx
    return ctx


def get_session_context(request: Request) -> SessionContext:
    """Require a live session. Raises HTTP 401 regardless of why it is missing.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(ctx: SessionContext = Depends(get_session_context)): ...
    """
    ctx = try_get_session(request)
    if ctx is None:
        raise HTTPException(status_code=401, detail=UNAUTHORIZED)
    return ctx


def require_role(*roles: str) -> Callable[[Request], SessionContext]:
    """Build a dependency that requires one of the given roles (401 first, then 403)."""

    def dependency(request: Request) -> SessionContext:
        ctx = get_session_context(request)
        if ctx.user.role not in roles:
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "Insufficient permissions."},
            )
        return ctx

    return dependency


require_super_admin = require_role("super_admin")
