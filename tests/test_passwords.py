"""Unit tests for auth/passwords.py and auth/policy.py.

Covers:
- hash_password() format and per-call salt
- verify_password() accepts the right password, rejects everything else
- verify_password() returns False (never raises) for corrupt stored values
- authenticate() failure modes all collapse to None
- validate_password() reports every failed rule at once
"""

from __future__ import annotations

import pytest

from auth.passwords import authenticate, hash_password, verify_password
from auth.policy import ERRORS, MAX_LENGTH, validate_password
from conftest import ADMIN_EMAIL, ADMIN_PASSWORD, seed_user

# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------


def test_hash_format_is_scrypt_salt_key() -> None:
    stored = hash_password("correct horse battery staple")
    method, salt_hex, key_hex = stored.split(":")
    assert method == "scrypt"
    assert len(bytes.fromhex(salt_hex)) == 16
    assert len(bytes.fromhex(key_hex)) == 64


def test_same_password_gets_fresh_salt() -> None:
    assert hash_password("same-password") != hash_password("same-password")


def test_verify_roundtrip() -> None:
    stored = hash_password("s3cret!")
    assert verify_password("s3cret!", stored) is True
    assert verify_password("s3cret?", stored) is False


@pytest.mark.parametrize(
    "stored",
    [
        "",
        "scrypt",
        "scrypt:abcd",
        "scrypt:abcd:ef01:extra",
        "bcrypt:abcd:ef01",
        "scrypt::ef01",
        "scrypt:abcd:",
        "scrypt:not-hex:ef01",
        "scrypt:abcd:zz",
    ],
)
def test_verify_malformed_stored_value_is_false(stored: str) -> None:
    assert verify_password("anything", stored) is False


def test_verify_non_string_stored_value_is_false() -> None:
    assert verify_password("anything", None) is False  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# authenticate()
# ---------------------------------------------------------------------------


def test_authenticate_success_normalizes_email(store) -> None:
    seed_user(store, ADMIN_EMAIL, ADMIN_PASSWORD, "super_admin")
    user = authenticate(store, "  Admin@Example.COM ", ADMIN_PASSWORD)
    assert user is not None
    assert user.email == ADMIN_EMAIL


def test_authenticate_unknown_email(store) -> None:
    assert authenticate(store, "nobody@example.com", ADMIN_PASSWORD) is None


def test_authenticate_wrong_password(store) -> None:
    seed_user(store, ADMIN_EMAIL, ADMIN_PASSWORD, "super_admin")
    assert authenticate(store, ADMIN_EMAIL, "wrong-password") is None


def test_authenticate_inactive_account(store) -> None:
    seed_user(store, ADMIN_EMAIL, ADMIN_PASSWORD, "editor", is_active=False)
    assert authenticate(store, ADMIN_EMAIL, ADMIN_PASSWORD) is None


# ---------------------------------------------------------------------------
# Strength policy
# ---------------------------------------------------------------------------


def test_strong_password_passes() -> None:
    check = validate_password("Zt6*Lr1%Qe8!Wm3#")
    assert check.valid is True
    assert check.errors == []
    assert check.score >= 3


def test_short_password_reports_every_failed_rule() -> None:
    check = validate_password("abc")
    assert check.valid is False
    assert ERRORS["too_short"] in check.errors
    assert ERRORS["no_uppercase"] in check.errors
    assert ERRORS["no_number"] in check.errors
    assert ERRORS["no_special"] in check.errors
    assert ERRORS["too_weak"] in check.errors
    assert ERRORS["no_lowercase"] not in check.errors


def test_common_password_is_too_weak_even_with_all_classes() -> None:
    check = validate_password("Password123!")
    assert check.valid is False
    assert check.errors == [ERRORS["too_weak"]]


def test_overlong_password_rejected() -> None:
    check = validate_password("Aa1!" + "x7Qz" * 40)
    assert len("Aa1!" + "x7Qz" * 40) > MAX_LENGTH
    assert ERRORS["too_long"] in check.errors


def test_empty_password() -> None:
    check = validate_password("")
    assert check.valid is False
    assert check.score == 0
    assert ERRORS["too_short"] in check.errors
