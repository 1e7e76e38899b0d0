"""
api/routes/users.py -- User administration (super_admin only).

Routes:
  GET    /api/auth/users       -- list all accounts
  PATCH  /api/auth/users/{id}  -- update name, role, is_active
  DELETE /api/auth/users/{id}  -- delete account and all of its sessions

There is no create route: accounts only come into existence through
invitation acceptance (or the create-admin CLI for the first account).

Security:
  Self-deactivation, self-demotion and self-deletion are refused, as is
  removing the last active super_admin (no recovery path without DB access).
  Deactivating an account revokes every session it holds, so the change is
  effective immediately rather than at session expiry.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.models import PublicUser, UserPatch
from audit.sink import audit_context, compute_changes
from auth.dependencies import require_super_admin
from auth.models import SessionContext, User, is_valid_role
from auth.store import AuthStore
from core.clock import to_iso, utcnow

logger = logging.getLogger("backoffice.users")

# Auth policy:
# - GET    /api/auth/users:       super_admin
# - PATCH  /api/auth/users/{id}:  super_admin + CSRF (gate)
# - DELETE /api/auth/users/{id}:  super_admin + CSRF (gate)
router = APIRouter()


def _audit_view(user: User) -> dict:
    return {"name": user.name, "role": user.role, "is_active": user.is_active}


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})


def _is_last_super_admin(store: AuthStore, target: User) -> bool:
    return target.role == "super_admin" and target.is_active and store.count_active_super_admins() <= 1


@router.get("/auth/users", response_model=list[PublicUser])
def list_users(request: Request, session_ctx: SessionContext = Depends(require_super_admin)) -> list[PublicUser]:
    store: AuthStore = request.app.state.store
    return [PublicUser.from_user(u) for u in store.list_users()]


@router.patch("/auth/users/{user_id}", response_model=PublicUser)
def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    session_ctx: SessionContext = Depends(require_super_admin),
) -> PublicUser:
    state = request.app.state
    store: AuthStore = state.store
    actor = session_ctx.user

    target = store.get_user_by_id(user_id)
    if target is None:
        raise _not_found()

    updates: dict = {}
    if body.name is not None:
        updates["name"] = body.name or None
    if body.role is not None:
        if not is_valid_role(body.role):
            raise HTTPException(status_code=400, detail={"code": "invalid_role", "message": "Invalid role."})
        if body.role != "super_admin" and target.id == actor.id:
            raise HTTPException(
                status_code=400,
                detail={"code": "self_demotion", "message": "You cannot remove your own super_admin role."},
            )
        if body.role != "super_admin" and _is_last_super_admin(store, target):
            raise HTTPException(
                status_code=400,
                detail={"code": "last_admin", "message": "Cannot demote the last active super_admin."},
            )
        updates["role"] = body.role
    if body.is_active is not None:
        if not body.is_active and target.id == actor.id:
            raise HTTPException(
                status_code=400,
                detail={"code": "self_deactivation", "message": "You cannot deactivate your own account."},
            )
        if not body.is_active and _is_last_super_admin(store, target):
            raise HTTPException(
                status_code=400,
                detail={"code": "last_admin", "message": "Cannot deactivate the last active super_admin."},
            )
        updates["is_active"] = body.is_active

    if not updates:
        raise HTTPException(status_code=400, detail={"code": "no_changes", "message": "No fields to update."})

    store.update_user(user_id, to_iso(utcnow()), **updates)
    if updates.get("is_active") is False:
        revoked = state.sessions.revoke_all(user_id)
        logger.info("User %d deactivated; %d session(s) revoked", user_id, revoked)

    updated = store.get_user_by_id(user_id)
    if updated is None:
        raise _not_found()

    state.audit.record(
        audit_context(request, actor).event(
            "UPDATE",
            "User",
            resource_id=user_id,
            resource_name=updated.email,
            changes=compute_changes(_audit_view(target), _audit_view(updated)),
        )
    )
    return PublicUser.from_user(updated)


@router.delete("/auth/users/{user_id}")
def delete_user(
    request: Request,
    user_id: int,
    session_ctx: SessionContext = Depends(require_super_admin),
) -> JSONResponse:
    state = request.app.state
    store: AuthStore = state.store
    actor = session_ctx.user

    if user_id == actor.id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_delete", "message": "You cannot delete your own account."},
        )
    target = store.get_user_by_id(user_id)
    if target is None:
        raise _not_found()
    if _is_last_super_admin(store, target):
        raise HTTPException(
            status_code=400,
            detail={"code": "last_admin", "message": "Cannot delete the last active super_admin."},
        )

    store.delete_user(user_id)
    state.audit.record(
        audit_context(request, actor).event(
            "DELETE",
            "User",
            resource_id=user_id,
            resource_name=target.email,
            changes=compute_changes(_audit_view(target), None),
        )
    )
    return JSONResponse(content={"success": True})
