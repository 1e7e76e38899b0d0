"""
api/routes/auth.py -- Login, logout, identity and the scheduled cleanup hook.

Routes:
  POST /api/auth/login    -- email + password; sets session cookie
  POST /api/auth/logout   -- revokes the presented session; clears cookie
  GET  /api/auth/me       -- current user + CSRF token (requires session)
  POST /api/auth/cleanup  -- purge expired sessions/invitations (Bearer CLEANUP_SECRET)

Security:
  POST /login is rate-limited per client (login policy, default 5 / 15 min);
      the attempt is counted before the body is validated. It
      is the only mutating auth route exempt from CSRF.
  authenticate() provides timing equalization -- use it, never inline.
  Every login failure returns the same bad_credentials body.
  Cache-Control: no-store on login responses.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import login_rate_limit
from api.models import CleanupResponse, LoginRequest, MeResponse, MessageResponse, PublicUser
from audit.sink import AuditSink, audit_context
from auth.dependencies import get_client_ip, get_session_context
from auth.models import SessionContext, normalize_email
from auth.passwords import authenticate
from auth.sessions import SESSION_COOKIE, SessionManager, clear_session_cookie, set_session_cookie
from core.clock import to_iso, utcnow

logger = logging.getLogger("backoffice.auth")

# Auth policy:
# - POST /api/auth/login:    public, rate-limited, CSRF exempt
# - POST /api/auth/logout:   CSRF (gate); works with or without a live session
# - GET  /api/auth/me:       requires session (get_session_context)
# - POST /api/auth/cleanup:  Bearer CLEANUP_SECRET + CSRF (gate)
router = APIRouter()


@router.post("/auth/login", response_model=PublicUser, dependencies=[Depends(login_rate_limit)])
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set the session cookie.

    Returns the same generic error for unknown email, wrong password and
    deactivated account ("bad_credentials") to avoid leaking which emails
    have accounts.
    """
    state = request.app.state
    audit: AuditSink = state.audit
    ctx = audit_context(request, None)

    user = authenticate(state.store, body.email, body.password)
    if user is None:
        audit.record(
            ctx.event(
                "LOGIN",
                "Session",
                resource_name=normalize_email(body.email),
                status="FAILED",
                error_message="Invalid credentials",
            )
        )
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid email or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    sessions: SessionManager = state.sessions
    issued = sessions.create(user.id, request.headers.get("user-agent"), get_client_ip(request))
    state.store.update_last_login(user.id, to_iso(utcnow()))
    refreshed = state.store.get_user_by_id(user.id) or user

    audit.record(
        audit_context(request, user).event("LOGIN", "Session", resource_id=issued.session_id, resource_name=user.email)
    )

    resp = JSONResponse(status_code=200, content=PublicUser.from_user(refreshed).model_dump())
    set_session_cookie(resp, issued.token, issued.expires_at, state.settings.secure_cookies)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Revoke the presented session (if any) and clear the cookie. Always 200."""
    state = request.app.state
    token = request.cookies.get(SESSION_COOKIE)
    session_ctx = state.sessions.validate(token)
    state.sessions.revoke_token(token)

    if session_ctx is not None:
        state.audit.record(
            audit_context(request, session_ctx.user).event(
                "LOGOUT",
                "Session",
                resource_id=session_ctx.session.id,
                resource_name=session_ctx.user.email,
            )
        )

    resp = JSONResponse(content={"message": "Logged out."})
    clear_session_cookie(resp)
    return resp


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, session_ctx: SessionContext = Depends(get_session_context)) -> MeResponse:
    """Return the current user and the CSRF token the frontend must echo.

    The gate has already ensured a CSRF cookie; when it minted one on this
    very request, the same value is returned here.
    """
    csrf_token = getattr(request.state, "csrf_token", "") or request.app.state.csrf.generate_token()
    return MeResponse(user=PublicUser.from_user(session_ctx.user), csrf_token=csrf_token)


@router.post("/auth/cleanup", response_model=CleanupResponse)
def cleanup(request: Request) -> CleanupResponse:
    """Purge expired sessions and invitations. For a scheduler, not for browsers.

    Requires Authorization: Bearer <CLEANUP_SECRET>. An unset secret disables
    the endpoint entirely (401 for every caller).
    """
    state = request.app.state
    secret = state.settings.cleanup_secret
    header = request.headers.get("authorization", "")
    presented = header[7:] if header.startswith("Bearer ") else ""
    if not secret or not presented or not hmac.compare_digest(presented.encode(), secret.encode()):
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )

    sessions_deleted = state.sessions.cleanup_expired()
    invitations_deleted = state.invitations.cleanup_expired()
    logger.info("Cleanup: %d session(s), %d invitation(s) removed", sessions_deleted, invitations_deleted)
    return CleanupResponse(
        sessions_deleted=sessions_deleted,
        invitations_deleted=invitations_deleted,
        timestamp=to_iso(utcnow()),
    )
