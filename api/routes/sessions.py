"""
api/routes/sessions.py -- Self-service session management.

Routes:
  GET    /api/auth/sessions             -- the caller's sessions, current one flagged
  DELETE /api/auth/sessions?id=<id>     -- revoke one of the caller's sessions
  POST   /api/auth/sessions/logout-all  -- revoke all, optionally keeping the current one

Security:
  IDOR guard: DELETE passes the caller's user_id to the store; the WHERE
  clause requires both to match, so another user's session id is a 404.
  Token hashes are never returned.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from api.models import LogoutAllRequest, LogoutAllResponse, SessionInfo
from audit.sink import audit_context
from auth.dependencies import get_session_context
from auth.models import SessionContext
from auth.sessions import SessionManager, clear_session_cookie

# Auth policy:
# - GET    /api/auth/sessions:             requires session
# - DELETE /api/auth/sessions:             requires session + CSRF (gate)
# - POST   /api/auth/sessions/logout-all:  requires session + CSRF (gate)
router = APIRouter()


@router.get("/auth/sessions", response_model=list[SessionInfo])
def list_sessions(request: Request, session_ctx: SessionContext = Depends(get_session_context)) -> list[SessionInfo]:
    sessions: SessionManager = request.app.state.sessions
    return [
        SessionInfo.from_session(s, current_id=session_ctx.session.id)
        for s in sessions.list_for_user(session_ctx.user.id)
    ]


@router.delete("/auth/sessions")
def revoke_session(
    request: Request,
    session_id: int = Query(alias="id"),
    session_ctx: SessionContext = Depends(get_session_context),
) -> JSONResponse:
    """Revoke one of the caller's own sessions. Revoking the current one also clears the cookie."""
    state = request.app.state
    removed = state.sessions.revoke(session_id, user_id=session_ctx.user.id)
    if not removed:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "Session not found."},
        )

    state.audit.record(
        audit_context(request, session_ctx.user).event(
            "LOGOUT",
            "Session",
            resource_id=session_id,
            resource_name=session_ctx.user.email,
        )
    )

    resp = JSONResponse(content={"success": True})
    if session_id == session_ctx.session.id:
        clear_session_cookie(resp)
    return resp


@router.post("/auth/sessions/logout-all", response_model=LogoutAllResponse)
def logout_all(
    request: Request,
    body: Optional[LogoutAllRequest] = None,
    session_ctx: SessionContext = Depends(get_session_context),
) -> JSONResponse:
    """Log out everywhere. With keep_current the calling session survives."""
    state = request.app.state
    keep_current = body.keep_current if body is not None else False
    revoked = state.sessions.revoke_all(
        session_ctx.user.id,
        except_session_id=session_ctx.session.id if keep_current else None,
    )

    state.audit.record(
        audit_context(request, session_ctx.user).event(
            "LOGOUT",
            "Session",
            resource_id=session_ctx.user.id,
            resource_name="Logout all sessions (kept current)" if keep_current else "Logout all sessions",
            changes={"after": {"sessions_revoked": revoked, "keep_current": keep_current}},
        )
    )

    resp = JSONResponse(content=LogoutAllResponse(sessions_revoked=revoked).model_dump())
    if not keep_current:
        clear_session_cookie(resp)
    return resp
