"""
auth/sessions.py -- Server-side session lifecycle.

A session is one row per logged-in browser/device. The browser holds the raw
token in the httpOnly `cms_session` cookie; the table holds only
HMAC(SECRET_KEY, token). Every protected request re-validates against the
table -- there is no in-process session cache, so a revocation takes effect
on the very next request.

Lifecycle:
  create()            login / invitation acceptance
  validate()          every protected request
  revoke()            one session (self-service or admin)
  revoke_token()      logout of the presented cookie
  revoke_all()        "log out everywhere", optionally keeping one session
  cleanup_expired()   scheduled purge of rows past expires_at

Concurrency: no locking. A session created a few milliseconds after a
concurrent revoke_all() for the same user may survive it; writes are
serialized per row by the database only.

Layer rule: no imports from api/ or audit/. Cookie helpers take any object
with Starlette's set_cookie / delete_cookie signature.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from auth.models import Session, SessionContext
from auth.store import AuthStore
from auth.tokens import SESSION_TOKEN_BYTES, generate_token, hash_token
from core.clock import Clock, to_iso, utcnow

logger = logging.getLogger("backoffice.sessions")

SESSION_COOKIE = "cms_session"


@dataclass
class IssuedSession:
    """Returned once by create(). `token` is never persisted or returned again."""

    token: str
    expires_at: datetime
    session_id: int


class SessionManager:
    """Issues, validates and revokes opaque session tokens backed by AuthStore."""

    def __init__(
        self,
        store: AuthStore,
        secret_key: str,
        ttl_seconds: int = 60 * 60 * 24,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._secret_key = secret_key
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def hash(self, token: str) -> str:
        return hash_token(self._secret_key, token)

    def create(self, user_id: int, user_agent: str | None = None, ip: str | None = None) -> IssuedSession:
        """Issue a new session for user_id and return the raw token exactly once."""
        now = self._clock()
        token = generate_token(SESSION_TOKEN_BYTES)
        expires_at = now + timedelta(seconds=self.ttl_seconds)
        session_id = self._store.create_session(
            Session(
                user_id=user_id,
                token_hash=self.hash(token),
                expires_at=to_iso(expires_at),
                user_agent=user_agent or None,
                ip_address=ip or None,
            ),
            now=to_iso(now),
        )
        logger.info("Session %d created for user %d", session_id, user_id)
        return IssuedSession(token=token, expires_at=expires_at, session_id=session_id)

    def validate(self, token: str | None) -> SessionContext | None:
        """Resolve a presented cookie value to a live session, or None.

        Unknown token, expired session and deactivated owner all return None.
        The expiry check is part of the lookup predicate, so "not found" and
        "found but expired" take the same path through the same query.
        """
        if not token:
            return None
        found = self._store.find_live_session(self.hash(token), to_iso(self._clock()))
        if found is None:
            return None
        session, user = found
        if not user.is_active:
            return None
        return SessionContext(session=session, user=user, token=token)

    def list_for_user(self, user_id: int) -> list[Session]:
        return self._store.list_sessions(user_id)

    def revoke(self, session_id: int, user_id: int | None = None) -> int:
        """Delete one session. Pass user_id to require ownership. Returns rows removed (0 or 1)."""
        return self._store.delete_session(session_id, user_id)

    def revoke_token(self, token: str | None) -> int:
        if not token:
            return 0
        return self._store.delete_session_by_hash(self.hash(token))

    def revoke_all(self, user_id: int, except_session_id: int | None = None) -> int:
        """Delete every session of user_id except except_session_id. Returns the count for audit."""
        count = self._store.delete_user_sessions(user_id, except_session_id)
        logger.info("Revoked %d session(s) for user %d", count, user_id)
        return count

    def cleanup_expired(self) -> int:
        """Delete every row whose expires_at has passed. Idempotent; safe alongside traffic."""
        return self._store.delete_expired_sessions(to_iso(self._clock()))


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str, expires_at: datetime, secure: bool) -> None:
    """Write the session token cookie.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="strict": never sent on cross-site requests.
    secure: HTTPS only in production.
    expires: matches the session row so both end together.
    """
    response.set_cookie(
        SESSION_COOKIE,
        value=token,
        httponly=True,
        samesite="strict",
        secure=secure,
        expires=expires_at,
        path="/",
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(SESSION_COOKIE, path="/")
