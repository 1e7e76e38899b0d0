"""
tests/test_api_users.py -- User administration under /api/auth/users.

Coverage:
  - listing is super_admin only and never exposes password hashes
  - PATCH role / name / is_active with audit diff
  - self-protection rules: no self-demotion, self-deactivation or self-delete
  - deactivation revokes the target's sessions immediately
  - DELETE removes the account and its sessions
"""

from __future__ import annotations

import pytest

from conftest import ADMIN_EMAIL, EDITOR_EMAIL, EDITOR_PASSWORD, csrf_headers, login, seed_user


@pytest.fixture
def admin_client(backoffice):
    login(backoffice.client)
    return backoffice.client


def test_list_users(backoffice, admin_client) -> None:
    resp = admin_client.get("/api/auth/users")
    assert resp.status_code == 200
    users = resp.json()
    assert [u["email"] for u in users] == [ADMIN_EMAIL, EDITOR_EMAIL]
    assert all("password_hash" not in u for u in users)


def test_list_users_forbidden_for_editor(backoffice) -> None:
    client = backoffice.client
    login(client, email=EDITOR_EMAIL, password=EDITOR_PASSWORD)
    resp = client.get("/api/auth/users")
    assert resp.status_code == 403
    assert resp.json() == {"error": {"code": "forbidden", "message": "Insufficient permissions."}}


def test_list_users_requires_session(backoffice) -> None:
    assert backoffice.client.get("/api/auth/users").status_code == 401


def test_update_role_is_audited(backoffice, admin_client) -> None:
    resp = admin_client.patch(
        f"/api/auth/users/{backoffice.editor_id}",
        json={"role": "viewer", "name": "Eddie"},
        headers=csrf_headers(admin_client),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["role"] == "viewer"
    assert body["name"] == "Eddie"

    (row,) = backoffice.audit_store.recent(action="UPDATE")
    assert row["resource_id"] == backoffice.editor_id
    assert row["changes"] == {
        "before": {"role": "editor", "name": None},
        "after": {"role": "viewer", "name": "Eddie"},
    }


def test_update_requires_csrf(backoffice, admin_client) -> None:
    resp = admin_client.patch(f"/api/auth/users/{backoffice.editor_id}", json={"role": "viewer"})
    assert resp.status_code == 403
    assert backoffice.store.get_user_by_id(backoffice.editor_id).role == "editor"


@pytest.mark.parametrize("role", ["admin", "Editor", "super-admin", ""])
def test_update_invalid_role(backoffice, admin_client, role) -> None:
    resp = admin_client.patch(
        f"/api/auth/users/{backoffice.editor_id}", json={"role": role}, headers=csrf_headers(admin_client)
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "invalid_role"


def test_update_no_changes(backoffice, admin_client) -> None:
    resp = admin_client.patch(f"/api/auth/users/{backoffice.editor_id}", json={}, headers=csrf_headers(admin_client))
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "no_changes"


def test_update_unknown_user(backoffice, admin_client) -> None:
    resp = admin_client.patch("/api/auth/users/9999", json={"role": "viewer"}, headers=csrf_headers(admin_client))
    assert resp.status_code == 404


def test_cannot_demote_self(backoffice, admin_client) -> None:
    resp = admin_client.patch(
        f"/api/auth/users/{backoffice.admin_id}", json={"role": "editor"}, headers=csrf_headers(admin_client)
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "self_demotion"


def test_cannot_deactivate_self(backoffice, admin_client) -> None:
    resp = admin_client.patch(
        f"/api/auth/users/{backoffice.admin_id}", json={"is_active": False}, headers=csrf_headers(admin_client)
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "self_deactivation"


def test_can_demote_another_super_admin(backoffice, admin_client) -> None:
    other_id = seed_user(backoffice.store, "second.admin@example.com", EDITOR_PASSWORD, "super_admin")
    resp = admin_client.patch(
        f"/api/auth/users/{other_id}", json={"role": "editor"}, headers=csrf_headers(admin_client)
    )
    assert resp.status_code == 200
    assert resp.json()["role"] == "editor"


def test_deactivation_revokes_sessions(backoffice, admin_client) -> None:
    sessions = admin_client.app.state.sessions
    victim = sessions.create(backoffice.editor_id)

    resp = admin_client.patch(
        f"/api/auth/users/{backoffice.editor_id}", json={"is_active": False}, headers=csrf_headers(admin_client)
    )
    assert resp.status_code == 200
    assert resp.json()["is_active"] is False
    assert sessions.validate(victim.token) is None
    assert backoffice.store.list_sessions(backoffice.editor_id) == []


def test_delete_user(backoffice, admin_client) -> None:
    admin_client.app.state.sessions.create(backoffice.editor_id)

    resp = admin_client.delete(f"/api/auth/users/{backoffice.editor_id}", headers=csrf_headers(admin_client))
    assert resp.status_code == 200
    assert resp.json() == {"success": True}
    assert backoffice.store.get_user_by_id(backoffice.editor_id) is None
    assert backoffice.store.list_sessions(backoffice.editor_id) == []

    (row,) = backoffice.audit_store.recent(action="DELETE")
    assert row["resource_type"] == "User"
    assert row["resource_name"] == EDITOR_EMAIL
    assert row["changes"]["before"]["role"] == "editor"


def test_delete_self_refused(backoffice, admin_client) -> None:
    resp = admin_client.delete(f"/api/auth/users/{backoffice.admin_id}", headers=csrf_headers(admin_client))
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "self_delete"


def test_delete_unknown_user(backoffice, admin_client) -> None:
    resp = admin_client.delete("/api/auth/users/9999", headers=csrf_headers(admin_client))
    assert resp.status_code == 404
