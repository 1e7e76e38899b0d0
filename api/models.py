"""
API request and response models for the backoffice REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Nothing secret crosses this boundary: password hashes and token hashes have no
field in any response model. Raw tokens appear exactly once, in
InvitationCreatedResponse.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import Invitation, Session, User
from auth.policy import validate_password

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/auth/login.

    No format check on email here: a malformed address simply fails to
    authenticate, with the same response as any other bad credential.
    """

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=1024)


class LogoutAllRequest(BaseModel):
    keep_current: bool = False


class UserPatch(BaseModel):
    """Request body for PATCH /api/auth/users/{id}. Omitted fields are left unchanged.

    role is a plain string so an unknown role yields a 400 invalid_role from
    the route rather than a schema error.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, max_length=255)
    role: Optional[str] = None
    is_active: Optional[bool] = None


class InvitationCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    role: str


class AcceptInvitationRequest(BaseModel):
    """Request body for POST /api/auth/invitations/accept.

    The password must satisfy the full strength policy; every failed rule is
    reported in the 422 detail.
    """

    token: str = Field(min_length=1, max_length=256)
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str
    name: Optional[str] = Field(default=None, max_length=255)

    @field_validator("email", mode="before")
    @classmethod
    def strip_email(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("password")
    @classmethod
    def strong_password(cls, value: str) -> str:
        check = validate_password(value)
        if not check.valid:
            raise ValueError("; ".join(check.errors))
        return value


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class PublicUser(BaseModel):
    """A user as the API shows it. password_hash is never included."""

    id: int
    email: str
    name: Optional[str] = None
    role: str
    is_active: bool
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    last_login_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "PublicUser":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            is_active=user.is_active,
            created_at=user.created_at,
            updated_at=user.updated_at,
            last_login_at=user.last_login_at,
        )


class MeResponse(BaseModel):
    user: PublicUser
    csrf_token: str


class SessionInfo(BaseModel):
    """One session row without its token hash."""

    id: int
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    created_at: Optional[str] = None
    expires_at: str
    is_current: bool = False

    @classmethod
    def from_session(cls, session: Session, current_id: Optional[int] = None) -> "SessionInfo":
        return cls(
            id=session.id,
            user_agent=session.user_agent,
            ip_address=session.ip_address,
            created_at=session.created_at,
            expires_at=session.expires_at,
            is_current=current_id is not None and session.id == current_id,
        )


class LogoutAllResponse(BaseModel):
    success: bool = True
    sessions_revoked: int


class MessageResponse(BaseModel):
    message: str


class InvitationResponse(BaseModel):
    """An invitation without its token hash."""

    id: int
    email: str
    role: str
    invited_by: Optional[int] = None
    expires_at: str
    accepted_at: Optional[str] = None
    revoked: bool = False
    created_at: Optional[str] = None

    @classmethod
    def from_invitation(cls, invitation: Invitation) -> "InvitationResponse":
        return cls(
            id=invitation.id,
            email=invitation.email,
            role=invitation.role,
            invited_by=invitation.invited_by,
            expires_at=invitation.expires_at,
            accepted_at=invitation.accepted_at,
            revoked=invitation.revoked,
            created_at=invitation.created_at,
        )


class InvitationCreatedResponse(BaseModel):
    """Returned once on creation. token is the only copy of the raw invitation token."""

    invitation: InvitationResponse
    token: str


class CleanupResponse(BaseModel):
    success: bool = True
    sessions_deleted: int
    invitations_deleted: int
    timestamp: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
