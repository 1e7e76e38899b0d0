"""
auth/passwords.py -- Password hashing, verification and credential login.

Security design decisions:
  KDF: scrypt (hashlib.scrypt), a memory-hard function, with fixed parameters
       N=2**14, r=8, p=1 and a 64-byte key. At these settings one derivation
       needs ~16 MiB and a few tens to hundreds of milliseconds. That cost is
       the point: it is the only intentionally slow call in the request path.

  Format: "scrypt:<salt hex>:<key hex>". The salt is 16 fresh random bytes per
       credential. A credential is never edited in place -- a password change
       writes a new string.

  Verification never raises on stored data. A corrupt or foreign credential
       string is a failed login, not a 500 with a stack trace that would
       reveal hash internals.

  Timing equalization: authenticate() always performs exactly one scrypt
       derivation, against _DUMMY_HASH when the email is unknown, so response
       time does not reveal which emails have accounts.

Layer rule: no imports from api/ or audit/.
"""

from __future__ import annotations

import binascii
import hashlib
import hmac
import secrets
from typing import TYPE_CHECKING

from auth.models import normalize_email

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import AuthStore

ALGORITHM = "scrypt"
SALT_BYTES = 16
KEY_BYTES = 64
SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1
# hashlib's default maxmem (32 MiB) is tight for N=2**14, r=8; give headroom.
_SCRYPT_MAXMEM = 64 * 1024 * 1024


def _derive(password: str, salt: bytes, length: int) -> bytes:
    return hashlib.scrypt(
        password.encode("utf-8"),
        salt=salt,
        n=SCRYPT_N,
        r=SCRYPT_R,
        p=SCRYPT_P,
        maxmem=_SCRYPT_MAXMEM,
        dklen=length,
    )


def hash_password(password: str) -> str:
    """Return a serialized scrypt credential for the given plaintext password."""
    salt = secrets.token_bytes(SALT_BYTES)
    key = _derive(password, salt, KEY_BYTES)
    return f"{ALGORITHM}:{salt.hex()}:{key.hex()}"


def verify_password(password: str, stored: str) -> bool:
    """Return True if the password matches the stored credential.

    Returns False (never raises) for: wrong number of ':' parts, an algorithm
    other than scrypt, empty salt or key, or non-hex content. The derived key
    length follows the stored key so older credentials keep verifying.
    """
    if not isinstance(stored, str):
        return False
    parts = stored.split(":")
    if len(parts) != 3:
        return False
    method, salt_hex, key_hex = parts
    if method != ALGORITHM or not salt_hex or not key_hex:
        return False
    try:
        salt = bytes.fromhex(salt_hex)
        expected = bytes.fromhex(key_hex)
    except (ValueError, binascii.Error):
        return False
    try:
        derived = _derive(password, salt, len(expected))
    except (ValueError, MemoryError):
        return False
    return hmac.compare_digest(derived, expected)


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("backoffice_timing_dummy")


def authenticate(store: AuthStore, email: str, password: str) -> User | None:
    """Credential login with timing equalization.

    - Unknown email: scrypt runs against _DUMMY_HASH (same cost as a real check)
    - Wrong password: scrypt runs against the real credential
    - Inactive account: the password is still checked before refusing

    Returns the User on success, None on any failure. Callers must not
    distinguish the failure causes in their response.
    """
    user = store.get_user_by_email(normalize_email(email))
    if user is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.password_hash):
        return None
    if not user.is_active:
        return None
    return user
