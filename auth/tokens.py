"""
auth/tokens.py -- Opaque token generation and keyed hashing.

Security design decisions:
  Tokens: secrets.token_hex(n) -- n random bytes as 2n hex chars. Session
       tokens use 32 bytes (256 bits), invitation tokens 24 bytes (192 bits).
       Tokens carry no structure and are not derived from user data; they
       only mean something after a server-side lookup.

  Hashing: HMAC-SHA256(SECRET_KEY, token) as hex. Deterministic, so the store
       can look a token up by its hash with a unique index. Keyed, so an
       attacker holding a copy of the database cannot confirm a guessed token
       without also holding SECRET_KEY. A slow KDF is unnecessary here: the
       inputs already have 192+ bits of entropy.

Layer rule: no imports from api/ or audit/.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

SESSION_TOKEN_BYTES = 32
INVITATION_TOKEN_BYTES = 24
CSRF_TOKEN_BYTES = 32


def generate_token(nbytes: int = SESSION_TOKEN_BYTES) -> str:
    return secrets.token_hex(nbytes)


def hash_token(secret_key: str, token: str) -> str:
    """Return HMAC-SHA256(secret_key, token) as a 64-char hex string."""
    return hmac.new(secret_key.encode("utf-8"), token.encode("utf-8"), hashlib.sha256).hexdigest()
