"""
auth/csrf.py -- Double-submit cookie CSRF protection.

How it works:
  1. Any response that finds no `cms_csrf` cookie on its request issues one
     (32 random bytes, hex). The cookie is readable by JS (httponly=False).
  2. The frontend copies the cookie value into the `x-csrf-token` header on
     every POST/PUT/PATCH/DELETE.
  3. The server accepts the request only when cookie and header agree.

A cross-site attacker can make the browser send the cookie but cannot read it,
so they cannot produce the matching header. samesite=strict on the cookie
already stops most cross-site sends; the token covers the rest.

The token is independent of the session: it exists before login and survives
logout, and is rotated only when the cookie is absent.

Comparison: both sides are passed through HMAC-SHA256(SECRET_KEY, value) and
the digests compared with hmac.compare_digest, so timing is independent of
where the two raw values first differ and of their lengths.

Layer rule: no imports from api/ or audit/.
"""

from __future__ import annotations

import hmac
from collections.abc import Mapping

from auth.tokens import CSRF_TOKEN_BYTES, generate_token, hash_token

CSRF_COOKIE = "cms_csrf"
CSRF_HEADER = "x-csrf-token"

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

CSRF_FAILED = {"code": "csrf_failed", "message": "Invalid CSRF token."}


class CsrfGuard:
    def __init__(self, secret_key: str, secure: bool = False, ttl_seconds: int = 60 * 60 * 24) -> None:
        self._secret_key = secret_key
        self.secure = secure
        self.ttl_seconds = ttl_seconds

    def generate_token(self) -> str:
        return generate_token(CSRF_TOKEN_BYTES)

    def issue_if_absent(self, cookies: Mapping[str, str]) -> tuple[str, bool]:
        """Return (token, issued). issued is True when a new token was minted and must be set."""
        existing = cookies.get(CSRF_COOKIE)
        if existing:
            return existing, False
        return self.generate_token(), True

    def validate(self, cookie_token: str | None, header_token: str | None) -> bool:
        """Fail closed: a missing or empty value on either side is a failure."""
        if not cookie_token or not header_token:
            return False
        return hmac.compare_digest(
            hash_token(self._secret_key, cookie_token),
            hash_token(self._secret_key, header_token),
        )

    @staticmethod
    def requires_validation(method: str) -> bool:
        return method.upper() in MUTATING_METHODS

    def set_cookie(self, response, token: str) -> None:
        """Write the CSRF cookie. httponly=False so the frontend can echo it in the header."""
        response.set_cookie(
            CSRF_COOKIE,
            value=token,
            httponly=False,
            samesite="strict",
            secure=self.secure,
            max_age=self.ttl_seconds,
            path="/",
        )
