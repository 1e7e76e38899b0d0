"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores map rows to
these classes; services and routes do the work.

Layer rule: no imports from api/ or audit/.
"""

from __future__ import annotations

from dataclasses import dataclass

ALLOWED_ROLES: tuple[str, ...] = ("super_admin", "editor", "viewer")


def is_valid_role(role: object) -> bool:
    """Exact-match role check. No trimming or case folding."""
    return isinstance(role, str) and role in ALLOWED_ROLES


def normalize_email(email: str) -> str:
    """Trim surrounding whitespace and lowercase. All lookups use this form."""
    return email.strip().lower()


@dataclass
class User:
    """A backoffice account.

    password_hash holds the serialized credential (scrypt:<salt>:<key>) and is
    never returned by the API -- route code converts through public_user().
    """

    email: str
    role: str  # "super_admin", "editor", "viewer"
    password_hash: str
    id: int | None = None
    name: str | None = None
    is_active: bool = True
    created_at: str | None = None
    updated_at: str | None = None
    last_login_at: str | None = None


@dataclass
class Session:
    """One authenticated browser/device.

    The raw token lives only in the client's cookie. token_hash is
    HMAC-SHA256(SECRET_KEY, token), so a leaked table yields nothing usable.
    """

    user_id: int
    token_hash: str
    expires_at: str
    id: int | None = None
    user_agent: str | None = None
    ip_address: str | None = None
    created_at: str | None = None


@dataclass
class Invitation:
    """Single-use onboarding token for a pre-assigned role.

    Lifecycle ends at acceptance (accepted_at set), revocation (a newer
    invitation for the same email, or explicit delete) or expiry cleanup.
    """

    email: str
    role: str
    token_hash: str
    expires_at: str
    id: int | None = None
    invited_by: int | None = None
    accepted_at: str | None = None
    revoked: bool = False
    created_at: str | None = None


@dataclass
class SessionContext:
    """Result of a successful session validation: the session, its owner, and the raw token."""

    session: Session
    user: User
    token: str
