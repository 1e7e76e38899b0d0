"""
audit/store.py -- SQLAlchemy Core persistence for the audit_logs table.

Rows are only ever inserted; nothing in the application updates or deletes
them. `changes` is stored as JSON ({"before": {...}, "after": {...}}).
"""

from __future__ import annotations

from sqlalchemy import JSON, Column, Integer, MetaData, String, Table, Text

from auth.store import make_engine

_metadata = MetaData()

_audit_logs = Table(
    "audit_logs",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, index=True),
    Column("user_email", String(255), nullable=False),
    Column("action", String(20), nullable=False, index=True),
    Column("resource_type", String(30), nullable=False),
    Column("resource_id", Integer),
    Column("resource_name", String(255)),
    Column("changes", JSON),
    Column("ip", String(45)),
    Column("user_agent", Text),
    Column("status", String(10), nullable=False, server_default="SUCCESS"),
    Column("error_message", Text),
    Column("created_at", String(32), nullable=False, index=True),
)


class AuditStore:
    def __init__(self, db_url: str) -> None:
        self.engine = make_engine(db_url)
        _metadata.create_all(self.engine)

    def insert(self, values: dict) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_audit_logs.insert().values(**values))
            conn.commit()
            return result.inserted_primary_key[0]

    def recent(self, limit: int = 50, action: str | None = None) -> list[dict]:
        """Newest entries first, optionally filtered by action."""
        query = _audit_logs.select()
        if action is not None:
            query = query.where(_audit_logs.c.action == action)
        query = query.order_by(_audit_logs.c.id.desc()).limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(query).mappings().fetchall()
        return [dict(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()
