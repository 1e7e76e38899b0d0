"""
api/routes/admin.py -- Administrative session control.

Routes:
  GET    /api/admin/users/{id}/sessions  -- list a user's sessions
  DELETE /api/admin/users/{id}/sessions  -- force logout: revoke all of them

These live outside /api/auth, so RequestGate has already required a session
(and CSRF for DELETE) before the role check below runs. The router also
carries the general API rate limit, as every non-auth router does.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from api.limiter import api_rate_limit
from api.models import SessionInfo
from audit.sink import audit_context
from auth.dependencies import require_super_admin
from auth.models import SessionContext

logger = logging.getLogger("backoffice.admin")

# Auth policy:
# - GET    /api/admin/users/{id}/sessions:  session (gate) + super_admin
# - DELETE /api/admin/users/{id}/sessions:  session + CSRF (gate) + super_admin
router = APIRouter(dependencies=[Depends(api_rate_limit)])


def _target_or_404(request: Request, user_id: int):
    target = request.app.state.store.get_user_by_id(user_id)
    if target is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})
    return target


@router.get("/admin/users/{user_id}/sessions", response_model=list[SessionInfo])
def list_user_sessions(
    request: Request,
    user_id: int,
    session_ctx: SessionContext = Depends(require_super_admin),
) -> list[SessionInfo]:
    _target_or_404(request, user_id)
    return [
        SessionInfo.from_session(s, current_id=session_ctx.session.id)
        for s in request.app.state.sessions.list_for_user(user_id)
    ]


@router.delete("/admin/users/{user_id}/sessions")
def force_logout(
    request: Request,
    user_id: int,
    session_ctx: SessionContext = Depends(require_super_admin),
) -> dict:
    """Revoke every session of the target user. Takes effect on their next request."""
    state = request.app.state
    target = _target_or_404(request, user_id)
    admin = session_ctx.user

    revoked = state.sessions.revoke_all(user_id)
    logger.info("Force logout of user %d by %d: %d session(s)", user_id, admin.id, revoked)

    state.audit.record(
        audit_context(request, admin).event(
            "DELETE",
            "Session",
            resource_id=user_id,
            resource_name=f"Force logout: {target.email}",
            changes={
                "after": {
                    "target_user_id": user_id,
                    "target_user_email": target.email,
                    "sessions_revoked": revoked,
                    "forced_by": admin.email,
                }
            },
        )
    )
    return {
        "success": True,
        "sessions_revoked": revoked,
        "target_user": {"id": target.id, "email": target.email, "name": target.name},
    }
