"""
auth/invitations.py -- Invitation-based onboarding.

There is no self-registration. A super_admin invites an email address with a
pre-assigned role; the invitee accepts with the single-use token from the
invitation link, choosing a password.

Token handling mirrors sessions: 24 random bytes as hex go out in the link,
only HMAC(SECRET_KEY, token) is stored. Issuing a new invitation for an email
marks every earlier invitation for that email revoked, so only the newest
link works.

Failure messages are deliberately coarse: an unknown token, a revoked one, an
accepted one and an expired one are all "Invalid or expired invitation".
"""

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy.exc import IntegrityError

from auth.models import Invitation, User, normalize_email
from auth.passwords import hash_password
from auth.store import AuthStore
from auth.tokens import INVITATION_TOKEN_BYTES, generate_token, hash_token
from core.clock import Clock, to_iso, utcnow

logger = logging.getLogger("backoffice.invitations")

DEFAULT_EXPIRATION_DAYS = 7


class InvitationError(Exception):
    """Acceptance failure carrying the HTTP status and error code the route should return."""

    def __init__(self, status_code: int, code: str, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class InvitationService:
    def __init__(
        self,
        store: AuthStore,
        secret_key: str,
        expiration_days: int = DEFAULT_EXPIRATION_DAYS,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._secret_key = secret_key
        if not isinstance(expiration_days, int) or expiration_days <= 0:
            expiration_days = DEFAULT_EXPIRATION_DAYS
        self.expiration_days = expiration_days
        self._clock = clock

    def create(self, email: str, role: str, invited_by: int | None) -> tuple[Invitation, str]:
        """Issue an invitation and return (invitation, raw_token). The token is not retrievable later."""
        normalized = normalize_email(email)
        now = self._clock()
        self._store.revoke_invitations_for_email(normalized)

        token = generate_token(INVITATION_TOKEN_BYTES)
        invitation = Invitation(
            email=normalized,
            role=role,
            token_hash=hash_token(self._secret_key, token),
            expires_at=to_iso(now + timedelta(days=self.expiration_days)),
            invited_by=invited_by,
            created_at=to_iso(now),
        )
        invitation.id = self._store.create_invitation(invitation, now=to_iso(now))
        logger.info("Invitation %d issued for role %s", invitation.id, role)
        return invitation, token

    def consume(self, token: str | None) -> Invitation | None:
        """Return the open invitation for this token, or None. Does not mark it accepted."""
        if not token:
            return None
        return self._store.find_open_invitation(hash_token(self._secret_key, token), to_iso(self._clock()))

    def mark_accepted(self, invitation_id: int) -> None:
        self._store.mark_invitation_accepted(invitation_id, to_iso(self._clock()))

    def accept(self, token: str, email: str, password: str, name: str | None = None) -> User:
        """Create the invited user and close the invitation.

        Raises InvitationError:
          400 invalid_invitation  unknown, revoked, accepted or expired token
          400 email_mismatch      submitted email differs from the invited one
          409 user_exists         an account already holds that email
        """
        invitation = self.consume(token)
        if invitation is None:
            raise InvitationError(400, "invalid_invitation", "Invalid or expired invitation")

        normalized = normalize_email(email)
        if normalize_email(invitation.email) != normalized:
            raise InvitationError(400, "email_mismatch", "Email does not match invitation")

        if self._store.get_user_by_email(normalized) is not None:
            raise InvitationError(409, "user_exists", "User already exists")

        now = to_iso(self._clock())
        user = User(
            email=normalized,
            role=invitation.role,
            password_hash=hash_password(password),
            name=(name or "").strip() or None,
            is_active=True,
            last_login_at=now,
        )
        try:
            user.id = self._store.create_user(user, now=now)
        except IntegrityError:
            # Concurrent acceptance for the same email won the insert.
            raise InvitationError(409, "user_exists", "User already exists") from None
        user.created_at = user.updated_at = now

        self.mark_accepted(invitation.id)
        logger.info("Invitation %d accepted by user %d", invitation.id, user.id)
        return user

    def list_all(self) -> list[Invitation]:
        return self._store.list_invitations()

    def delete(self, invitation_id: int) -> bool:
        return self._store.delete_invitation(invitation_id)

    def cleanup_expired(self) -> int:
        """Delete expired invitations that were never accepted."""
        return self._store.delete_expired_invitations(to_iso(self._clock()))
