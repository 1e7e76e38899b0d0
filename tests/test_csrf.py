"""Unit tests for auth/csrf.py -- the double-submit token check."""

from __future__ import annotations

import pytest
from starlette.responses import Response

from auth.csrf import CSRF_COOKIE, CsrfGuard
from conftest import TEST_SECRET


@pytest.fixture
def guard() -> CsrfGuard:
    return CsrfGuard(TEST_SECRET)


def test_generated_tokens_are_64_hex_and_unique(guard) -> None:
    tokens = {guard.generate_token() for _ in range(50)}
    assert len(tokens) == 50
    for token in tokens:
        assert len(token) == 64
        int(token, 16)


@pytest.mark.parametrize(
    "cookie, header, expected",
    [
        ("abc123", "abc123", True),
        ("abc123", "abc124", False),
        ("abc123", "abc1234", False),
        ("abc123", "", False),
        ("", "abc123", False),
        (None, "abc123", False),
        ("abc123", None, False),
        (None, None, False),
        ("", "", False),
    ],
)
def test_validate(guard, cookie, header, expected) -> None:
    assert guard.validate(cookie, header) is expected


@pytest.mark.parametrize(
    "method, expected",
    [
        ("POST", True),
        ("PUT", True),
        ("PATCH", True),
        ("DELETE", True),
        ("delete", True),
        ("GET", False),
        ("HEAD", False),
        ("OPTIONS", False),
    ],
)
def test_requires_validation(method, expected) -> None:
    assert CsrfGuard.requires_validation(method) is expected


def test_issue_if_absent_keeps_existing(guard) -> None:
    token, issued = guard.issue_if_absent({CSRF_COOKIE: "existing"})
    assert (token, issued) == ("existing", False)


def test_issue_if_absent_mints_new(guard) -> None:
    token, issued = guard.issue_if_absent({})
    assert issued is True
    assert len(token) == 64

    token, issued = guard.issue_if_absent({CSRF_COOKIE: ""})
    assert issued is True


def test_cookie_is_readable_by_script() -> None:
    resp = Response()
    CsrfGuard(TEST_SECRET, secure=True, ttl_seconds=600).set_cookie(resp, "tok")
    header = resp.headers["set-cookie"]
    assert header.startswith(f"{CSRF_COOKIE}=tok")
    assert "HttpOnly" not in header
    assert "SameSite=strict" in header
    assert "Max-Age=600" in header
    assert "Secure" in header
