"""
audit/sink.py -- Fire-and-forget audit recording.

Routes build an AuditContext from the request once, then record one
AuditEvent per outcome:

    ctx = audit_context(request, user)
    sink.record(ctx.event("LOGIN", "Session", resource_id=sid))

record() never raises. A failed write is logged with its traceback and the
request carries on; losing an audit row is preferable to failing a logout.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

from auth.dependencies import get_client_ip
from auth.models import User
from audit.store import AuditStore
from core.clock import Clock, to_iso, utcnow

logger = logging.getLogger("backoffice.audit")

ACTIONS = frozenset({"LOGIN", "LOGOUT", "INVITE", "CREATE", "UPDATE", "DELETE", "ACCESS"})
RESOURCE_TYPES = frozenset({"Session", "User", "Invitation"})


@dataclass
class AuditEvent:
    action: str  # LOGIN | LOGOUT | INVITE | CREATE | UPDATE | DELETE | ACCESS
    resource_type: str  # Session | User | Invitation
    actor_user_id: int | None = None
    actor_email: str = "anonymous"
    resource_id: int | None = None
    resource_name: str | None = None
    changes: dict[str, Any] | None = None
    status: str = "SUCCESS"  # SUCCESS | FAILED
    error_message: str | None = None
    ip: str | None = None
    user_agent: str | None = None


@dataclass
class AuditContext:
    """Who did it and from where; shared by every event of one request."""

    actor_user_id: int | None
    actor_email: str
    ip: str | None
    user_agent: str | None

    def event(self, action: str, resource_type: str, **fields: Any) -> AuditEvent:
        return AuditEvent(
            action=action,
            resource_type=resource_type,
            actor_user_id=self.actor_user_id,
            actor_email=self.actor_email,
            ip=self.ip,
            user_agent=self.user_agent,
            **fields,
        )


def audit_context(request, user: User | None) -> AuditContext:
    return AuditContext(
        actor_user_id=user.id if user is not None else None,
        actor_email=user.email if user is not None else "anonymous",
        ip=get_client_ip(request),
        user_agent=request.headers.get("user-agent") or None,
    )


def compute_changes(before: dict | None, after: dict | None) -> dict | None:
    """Reduce a before/after pair to the keys whose values differ.

    Returns None when nothing changed. A one-sided pair is returned as-is.
    """
    if not before and not after:
        return None
    if before and after:
        changed_before: dict = {}
        changed_after: dict = {}
        for key in before.keys() | after.keys():
            if before.get(key) != after.get(key):
                changed_before[key] = before.get(key)
                changed_after[key] = after.get(key)
        if not changed_before:
            return None
        return {"before": changed_before, "after": changed_after}
    if before:
        return {"before": before}
    return {"after": after}


class AuditSink:
    def __init__(self, store: AuditStore, clock: Clock = utcnow) -> None:
        self._store = store
        self._clock = clock

    def record(self, event: AuditEvent) -> None:
        """Persist one event. Best effort: errors are logged, never raised."""
        if event.action not in ACTIONS or event.resource_type not in RESOURCE_TYPES:
            logger.warning("Recording unrecognized audit event %s %s", event.action, event.resource_type)
        try:
            values = asdict(event)
            self._store.insert(
                {
                    "user_id": values["actor_user_id"],
                    "user_email": values["actor_email"],
                    "action": values["action"],
                    "resource_type": values["resource_type"],
                    "resource_id": values["resource_id"],
                    "resource_name": values["resource_name"],
                    "changes": values["changes"],
                    "ip": values["ip"],
                    "user_agent": values["user_agent"],
                    "status": values["status"],
                    "error_message": values["error_message"],
                    "created_at": to_iso(self._clock()),
                }
            )
        except Exception:
            logger.exception("Failed to write audit log (%s %s)", event.action, event.resource_type)
