"""Unit tests for audit/sink.py and audit/store.py."""

from __future__ import annotations

import logging

import pytest

from audit.sink import AuditContext, AuditEvent, AuditSink, compute_changes
from core.clock import to_iso


def test_record_persists_all_fields(audit_store, clock) -> None:
    sink = AuditSink(audit_store, clock=clock)
    ctx = AuditContext(actor_user_id=7, actor_email="admin@example.com", ip="10.0.0.1", user_agent="pytest")

    sink.record(
        ctx.event(
            "UPDATE",
            "User",
            resource_id=9,
            resource_name="editor@example.com",
            changes={"before": {"role": "viewer"}, "after": {"role": "editor"}},
        )
    )

    (row,) = audit_store.recent()
    assert row["user_id"] == 7
    assert row["user_email"] == "admin@example.com"
    assert row["action"] == "UPDATE"
    assert row["resource_type"] == "User"
    assert row["resource_id"] == 9
    assert row["resource_name"] == "editor@example.com"
    assert row["changes"] == {"before": {"role": "viewer"}, "after": {"role": "editor"}}
    assert row["ip"] == "10.0.0.1"
    assert row["user_agent"] == "pytest"
    assert row["status"] == "SUCCESS"
    assert row["error_message"] is None
    assert row["created_at"] == to_iso(clock.now)


def test_anonymous_failed_event_defaults(audit_store) -> None:
    AuditSink(audit_store).record(
        AuditEvent("LOGIN", "Session", status="FAILED", error_message="Invalid credentials")
    )
    (row,) = audit_store.recent()
    assert row["user_id"] is None
    assert row["user_email"] == "anonymous"
    assert row["status"] == "FAILED"


def test_recent_newest_first_and_filtered(audit_store) -> None:
    sink = AuditSink(audit_store)
    for action in ("LOGIN", "LOGOUT", "LOGIN"):
        sink.record(AuditEvent(action, "Session"))

    rows = audit_store.recent()
    assert [r["action"] for r in rows] == ["LOGIN", "LOGOUT", "LOGIN"]
    assert rows[0]["id"] > rows[-1]["id"]

    assert [r["action"] for r in audit_store.recent(action="LOGOUT")] == ["LOGOUT"]
    assert len(audit_store.recent(limit=2)) == 2


class _BrokenStore:
    def insert(self, values: dict) -> int:
        raise RuntimeError("database is locked")


def test_record_never_raises(caplog) -> None:
    sink = AuditSink(_BrokenStore())  # type: ignore[arg-type]
    with caplog.at_level(logging.ERROR, logger="backoffice.audit"):
        sink.record(AuditEvent("DELETE", "User", resource_id=1))
    assert "Failed to write audit log (DELETE User)" in caplog.text


def test_unrecognized_event_is_still_written(audit_store, caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="backoffice.audit"):
        AuditSink(audit_store).record(AuditEvent("PUBLISH", "Entry"))
    assert "unrecognized audit event PUBLISH Entry" in caplog.text
    assert [r["action"] for r in audit_store.recent()] == ["PUBLISH"]


@pytest.mark.parametrize(
    "before, after, expected",
    [
        (None, None, None),
        ({}, {}, None),
        ({"role": "editor"}, {"role": "editor"}, None),
        (
            {"role": "viewer", "name": "A"},
            {"role": "editor", "name": "A"},
            {"before": {"role": "viewer"}, "after": {"role": "editor"}},
        ),
        ({"name": "A"}, {"name": "A", "is_active": False}, {"before": {"is_active": None}, "after": {"is_active": False}}),
        ({"role": "editor"}, None, {"before": {"role": "editor"}}),
        (None, {"role": "editor"}, {"after": {"role": "editor"}}),
    ],
)
def test_compute_changes(before, after, expected) -> None:
    assert compute_changes(before, after) == expected
