"""
tests/conftest.py -- Shared test fixtures for backoffice unit and integration tests.

This module provides:
  - FakeClock: injectable clock for expiring sessions/invitations/windows without sleeping
  - _make_test_stores(): isolated named shared-memory DBs for auth + audit
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - backoffice: a TestClient plus handles on its stores, clock and seeded super_admin
  - login() / csrf_headers(): small request helpers

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

SECRET_KEY / ENVIRONMENT must be set before any api/ import because
api/main.py reads get_settings() at import time to configure logging.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta

# CRITICAL: Set before any api/auth/core import so get_settings() resolves
# without generating a random key.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-0123456789abcdef0123456789abcdef")

import pytest
from fastapi.testclient import TestClient

from api.main import app, configure_state
from audit.store import AuditStore
from auth.csrf import CSRF_COOKIE, CSRF_HEADER
from auth.mailer import InvitationMailer
from auth.models import User
from auth.passwords import hash_password
from auth.store import AuthStore
from core.clock import to_iso, utcnow
from core.config import Settings

TEST_SECRET = "test-secret-key-0123456789abcdef0123456789abcdef"
CLEANUP_SECRET = "test-cleanup-secret"

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "Xq7!mP2#vL9@tR4z"
EDITOR_EMAIL = "editor@example.com"
EDITOR_PASSWORD = "Hw3$kN8^bJ5&yF1q"

# Policy-compliant password for invitation acceptance tests.
STRONG_PASSWORD = "Zt6*Lr1%Qe8!Wm3#"


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when told to.

    Starts at the real current time so cookies carrying an Expires derived
    from it are not already expired for the HTTP client's cookie jar.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or utcnow()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _memory_url(name: str) -> str:
    return f"sqlite:///file:{name}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def _make_test_stores(db_suffix: str) -> tuple[AuthStore, AuditStore]:
    """Create isolated named shared-memory SQLite stores.

    Args:
        db_suffix: Readable part of the DB name; a uuid is appended so every
                   fixture instance gets a fresh database.
    """
    return AuthStore(_memory_url(f"test_auth_{db_suffix}")), AuditStore(_memory_url(f"test_audit_{db_suffix}"))


@pytest.fixture
def store() -> Generator[AuthStore, None, None]:
    s = AuthStore(_memory_url("unit_auth"))
    yield s
    s.close()


@pytest.fixture
def audit_store() -> Generator[AuditStore, None, None]:
    s = AuditStore(_memory_url("unit_audit"))
    yield s
    s.close()


def seed_user(store: AuthStore, email: str, password: str, role: str, is_active: bool = True) -> int:
    return store.create_user(
        User(email=email, role=role, password_hash=hash_password(password), is_active=is_active),
        now=to_iso(utcnow()),
    )


def make_settings(**overrides) -> Settings:
    values = {
        "secret_key": TEST_SECRET,
        "environment": "test",
        "cleanup_secret": CLEANUP_SECRET,
        "allowed_origins": "",
    }
    values.update(overrides)
    return Settings(**values)


# ---------------------------------------------------------------------------
# App fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, store: AuthStore, audit_store: AuditStore, clock, mailer):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the configured database. Background tasks
    are long-sleeping coroutines so shutdown still has real tasks to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        configure_state(app, settings, store, audit_store, clock=clock, mailer=mailer)
        app.state.background_tasks = [asyncio.create_task(asyncio.sleep(99999))]
        yield
        for task in app.state.background_tasks:
            task.cancel()

    return test_lifespan


@dataclass
class Backoffice:
    client: TestClient
    store: AuthStore
    audit_store: AuditStore
    clock: FakeClock
    admin_id: int
    editor_id: int


@pytest.fixture
def backoffice(clock: FakeClock) -> Generator[Backoffice, None, None]:
    """Yield a Backoffice bundle around a TestClient on the real app.

    Seeds one super_admin and one editor. Each test gets fresh stores, a
    fresh rate limiter and an empty cookie jar.
    """
    store, audit_store = _make_test_stores("api")
    admin_id = seed_user(store, ADMIN_EMAIL, ADMIN_PASSWORD, "super_admin")
    editor_id = seed_user(store, EDITOR_EMAIL, EDITOR_PASSWORD, "editor")

    app.router.lifespan_context = _patch_lifespan(
        make_settings(), store, audit_store, clock, InvitationMailer(None, "no-reply@test.local")
    )

    with TestClient(app, raise_server_exceptions=True) as client:
        yield Backoffice(client, store, audit_store, clock, admin_id, editor_id)

    store.close()
    audit_store.close()


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------


def csrf_headers(client: TestClient) -> dict[str, str]:
    """Header that echoes the client's CSRF cookie. Fetches /health first if the jar has none."""
    token = client.cookies.get(CSRF_COOKIE)
    if not token:
        client.get("/health")
        token = client.cookies.get(CSRF_COOKIE)
    return {CSRF_HEADER: token}


def login(client: TestClient, email: str = ADMIN_EMAIL, password: str = ADMIN_PASSWORD, **kwargs):
    return client.post("/api/auth/login", json={"email": email, "password": password}, **kwargs)
