"""
api/routes/invitations.py -- Invitation management and acceptance.

Routes:
  GET    /api/auth/invitations         -- list invitations (super_admin)
  POST   /api/auth/invitations         -- invite an email with a role (super_admin)
  DELETE /api/auth/invitations/{id}    -- delete an invitation (super_admin)
  POST   /api/auth/invitations/accept  -- create the account from a token (public)

Security:
  The raw invitation token is returned exactly once, in the 201 response of
  POST /invitations (and in the email). Listings never include token hashes.
  Acceptance errors do not distinguish unknown, revoked, accepted and expired
  tokens.
  All mutating routes here pass the gate's CSRF check; an invitee picks up the
  CSRF cookie from any earlier response (e.g. loading the acceptance page).
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.models import AcceptInvitationRequest, InvitationCreate, InvitationCreatedResponse, InvitationResponse, PublicUser
from audit.sink import audit_context
from auth.dependencies import get_client_ip, require_super_admin
from auth.invitations import InvitationError, InvitationService
from auth.mailer import MailerError
from auth.models import SessionContext, is_valid_role, normalize_email
from auth.sessions import set_session_cookie

logger = logging.getLogger("backoffice.invitations")

# Auth policy:
# - GET    /api/auth/invitations:         super_admin
# - POST   /api/auth/invitations:         super_admin + CSRF (gate)
# - DELETE /api/auth/invitations/{id}:    super_admin + CSRF (gate)
# - POST   /api/auth/invitations/accept:  public + CSRF (gate)
router = APIRouter()


@router.get("/auth/invitations", response_model=list[InvitationResponse])
def list_invitations(
    request: Request, session_ctx: SessionContext = Depends(require_super_admin)
) -> list[InvitationResponse]:
    service: InvitationService = request.app.state.invitations
    return [InvitationResponse.from_invitation(i) for i in service.list_all()]


@router.post("/auth/invitations", response_model=InvitationCreatedResponse, status_code=201)
def create_invitation(
    request: Request,
    body: InvitationCreate,
    session_ctx: SessionContext = Depends(require_super_admin),
) -> InvitationCreatedResponse:
    """Invite an email address. Earlier invitations for the same email stop working."""
    state = request.app.state
    service: InvitationService = state.invitations
    ctx = audit_context(request, session_ctx.user)

    if not is_valid_role(body.role):
        raise HTTPException(status_code=400, detail={"code": "invalid_role", "message": "Invalid role."})

    email = normalize_email(body.email)
    if state.store.get_user_by_email(email) is not None:
        raise HTTPException(status_code=409, detail={"code": "user_exists", "message": "User already exists."})

    invitation, token = service.create(email, body.role, invited_by=session_ctx.user.id)

    try:
        state.mailer.send_invitation(email, token, state.settings.public_base_url, service.expiration_days)
    except MailerError as exc:
        state.audit.record(
            ctx.event(
                "INVITE",
                "Invitation",
                resource_id=invitation.id,
                resource_name=email,
                status="FAILED",
                error_message=str(exc),
            )
        )
        raise HTTPException(
            status_code=502,
            detail={"code": "mail_failed", "message": "Invitation created but the email could not be sent."},
        ) from exc

    state.audit.record(
        ctx.event(
            "INVITE",
            "Invitation",
            resource_id=invitation.id,
            resource_name=email,
            changes={"after": {"email": email, "role": body.role}},
        )
    )
    return InvitationCreatedResponse(invitation=InvitationResponse.from_invitation(invitation), token=token)


@router.delete("/auth/invitations/{invitation_id}")
def delete_invitation(
    request: Request,
    invitation_id: int,
    session_ctx: SessionContext = Depends(require_super_admin),
) -> JSONResponse:
    state = request.app.state
    existing = state.store.get_invitation(invitation_id)
    if existing is None or not state.invitations.delete(invitation_id):
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Invitation not found."})

    state.audit.record(
        audit_context(request, session_ctx.user).event(
            "DELETE",
            "Invitation",
            resource_id=invitation_id,
            resource_name=existing.email,
        )
    )
    return JSONResponse(content={"success": True})


@router.post("/auth/invitations/accept", response_model=PublicUser, status_code=201)
def accept_invitation(request: Request, body: AcceptInvitationRequest) -> JSONResponse:
    """Create the invited account, then log it in (201 + session cookie)."""
    state = request.app.state
    service: InvitationService = state.invitations
    try:
        user = service.accept(body.token, body.email, body.password, body.name)
    except InvitationError as exc:
        logger.info("Invitation acceptance refused: %s", exc.code)
        raise HTTPException(
            status_code=exc.status_code,
            detail={"code": exc.code, "message": exc.message},
        ) from exc

    issued = state.sessions.create(user.id, request.headers.get("user-agent"), get_client_ip(request))
    state.audit.record(
        audit_context(request, user).event(
            "CREATE",
            "User",
            resource_id=user.id,
            resource_name=user.email,
            changes={"after": {"email": user.email, "role": user.role}},
        )
    )

    resp = JSONResponse(status_code=201, content=PublicUser.from_user(user).model_dump())
    set_session_cookie(resp, issued.token, issued.expires_at, state.settings.secure_cookies)
    return resp
