"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. AuthStore is the repository;
_row_to_user / _row_to_session / _row_to_invitation are the mappers.
Services and routes never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Only hashes of session and invitation tokens are stored. The lookup
  methods take a hash, never a raw token, so the store cannot be misused to
  persist one.

  Expiry is evaluated inside the WHERE clause (expires_at > :now). A missing
  row and an expired row therefore produce the same empty result from the
  same query.

Timestamps are fixed-width UTC ISO strings (core.clock.to_iso), which makes
the lexical comparisons above chronological.

DB URL: Settings.database_url (default sqlite file at the repository root).

Layer rule: no imports from api/ or audit/.
"""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    LABEL_STYLE_TABLENAME_PLUS_COL,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import Invitation, Session, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("name", String(255)),
    Column("role", String(30), nullable=False, server_default="viewer"),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login_at", String(32)),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("user_agent", Text),
    Column("ip", String(45)),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False, index=True),
)

_invitations = Table(
    "invitations",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, index=True),
    Column("role", String(30), nullable=False),
    Column("token_hash", String(64), nullable=False, unique=True),
    Column("invited_by", Integer, ForeignKey("users.id")),
    Column("expires_at", String(32), nullable=False),
    Column("accepted_at", String(32)),
    Column("revoked", Boolean, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so session lookups are not blocked by writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create an engine with the SQLite settings every store in this repo needs."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for User, Session and Invitation entities.

    Usage:
        store = AuthStore("sqlite:///backoffice.db")
        uid = store.create_user(User(email="a@b.c", role="editor", password_hash=hash_password(pw)), now)
        user = store.get_user_by_email("a@b.c")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = make_engine(db_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User, now: str) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers translate that into a 409.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email,
                    password_hash=user.password_hash,
                    name=user.name,
                    role=user.role,
                    is_active=user.is_active,
                    created_at=now,
                    updated_at=now,
                    last_login_at=user.last_login_at,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_user_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_email(self, email: str) -> User | None:
        """Exact match on the stored (already normalized) email."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.email)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: int, now: str, **fields) -> bool:
        """Update mutable fields (name, role, is_active, password_hash).

        Returns True if a row was updated, False if user_id was not found.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(updated_at=now, **fields))
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: int, now: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login_at=now, updated_at=now))
            conn.commit()

    def count_active_super_admins(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_users)
                .where((_users.c.role == "super_admin") & (_users.c.is_active.is_(True)))
            ).scalar()
        return result or 0

    def delete_user(self, user_id: int) -> bool:
        """Delete a user together with all of their sessions.

        Both deletes run in one transaction so a deleted account never keeps a
        live session row behind.
        """
        with self.engine.begin() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, session: Session, now: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.insert().values(
                    user_id=session.user_id,
                    token_hash=session.token_hash,
                    user_agent=session.user_agent,
                    ip=session.ip_address,
                    created_at=now,
                    expires_at=session.expires_at,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def find_live_session(self, token_hash: str, now: str) -> tuple[Session, User] | None:
        """Return (session, owner) for an unexpired session hash, else None.

        One joined query; the caller decides what to do with an inactive owner.
        Columns are labelled <table>_<column> because both tables have id and
        created_at.
        """
        query = (
            select(_sessions, _users)
            .join_from(_sessions, _users, _users.c.id == _sessions.c.user_id)
            .where((_sessions.c.token_hash == token_hash) & (_sessions.c.expires_at > now))
            .set_label_style(LABEL_STYLE_TABLENAME_PLUS_COL)
        )
        with self.engine.connect() as conn:
            row = conn.execute(query).mappings().fetchone()
        if row is None:
            return None
        session = Session(
            id=row["sessions_id"],
            user_id=row["sessions_user_id"],
            token_hash=row["sessions_token_hash"],
            user_agent=row["sessions_user_agent"],
            ip_address=row["sessions_ip"],
            created_at=row["sessions_created_at"],
            expires_at=row["sessions_expires_at"],
        )
        user = User(
            id=row["users_id"],
            email=row["users_email"],
            password_hash=row["users_password_hash"],
            name=row["users_name"],
            role=row["users_role"],
            is_active=bool(row["users_is_active"]),
            created_at=row["users_created_at"],
            updated_at=row["users_updated_at"],
            last_login_at=row["users_last_login_at"],
        )
        return session, user

    def list_sessions(self, user_id: int) -> list[Session]:
        """All session rows for a user, newest first (expired rows included until cleanup)."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select().where(_sessions.c.user_id == user_id).order_by(_sessions.c.created_at.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def delete_session(self, session_id: int, user_id: int | None = None) -> int:
        """Delete one session. When user_id is given the row must also belong to it (IDOR guard)."""
        condition = _sessions.c.id == session_id
        if user_id is not None:
            condition = condition & (_sessions.c.user_id == user_id)
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(condition))
            conn.commit()
        return result.rowcount

    def delete_session_by_hash(self, token_hash: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.token_hash == token_hash))
            conn.commit()
        return result.rowcount

    def delete_user_sessions(self, user_id: int, except_session_id: int | None = None) -> int:
        condition = _sessions.c.user_id == user_id
        if except_session_id is not None:
            condition = condition & (_sessions.c.id != except_session_id)
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(condition))
            conn.commit()
        return result.rowcount

    def delete_expired_sessions(self, now: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= now))
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Invitations
    # ------------------------------------------------------------------

    def create_invitation(self, invitation: Invitation, now: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _invitations.insert().values(
                    email=invitation.email,
                    role=invitation.role,
                    token_hash=invitation.token_hash,
                    invited_by=invitation.invited_by,
                    expires_at=invitation.expires_at,
                    revoked=False,
                    created_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_invitation(self, invitation_id: int) -> Invitation | None:
        with self.engine.connect() as conn:
            row = conn.execute(_invitations.select().where(_invitations.c.id == invitation_id)).fetchone()
        return _row_to_invitation(row) if row is not None else None

    def find_open_invitation(self, token_hash: str, now: str) -> Invitation | None:
        """Return the invitation for this hash if it is unrevoked, unaccepted and unexpired."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _invitations.select().where(
                    (_invitations.c.token_hash == token_hash)
                    & (_invitations.c.revoked.is_(False))
                    & (_invitations.c.accepted_at.is_(None))
                    & (_invitations.c.expires_at > now)
                )
            ).fetchone()
        return _row_to_invitation(row) if row is not None else None

    def list_invitations(self) -> list[Invitation]:
        with self.engine.connect() as conn:
            rows = conn.execute(_invitations.select().order_by(_invitations.c.created_at.desc())).fetchall()
        return [_row_to_invitation(r) for r in rows]

    def revoke_invitations_for_email(self, email: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _invitations.update()
                .where((_invitations.c.email == email) & (_invitations.c.revoked.is_(False)))
                .values(revoked=True)
            )
            conn.commit()
        return result.rowcount

    def mark_invitation_accepted(self, invitation_id: int, now: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(_invitations.update().where(_invitations.c.id == invitation_id).values(accepted_at=now))
            conn.commit()

    def delete_invitation(self, invitation_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_invitations.delete().where(_invitations.c.id == invitation_id))
            conn.commit()
        return result.rowcount > 0

    def delete_expired_invitations(self, now: str) -> int:
        """Delete expired invitations that were never accepted. Accepted rows are kept as history."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _invitations.delete().where(
                    (_invitations.c.expires_at <= now) & (_invitations.c.accepted_at.is_(None))
                )
            )
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        name=row.name,
        role=row.role,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login_at=row.last_login_at,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        user_agent=row.user_agent,
        ip_address=row.ip,
        created_at=row.created_at,
        expires_at=row.expires_at,
    )


def _row_to_invitation(row) -> Invitation:
    return Invitation(
        id=row.id,
        email=row.email,
        role=row.role,
        token_hash=row.token_hash,
        invited_by=row.invited_by,
        expires_at=row.expires_at,
        accepted_at=row.accepted_at,
        revoked=bool(row.revoked),
        created_at=row.created_at,
    )
