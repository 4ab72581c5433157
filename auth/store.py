"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
AuthStore is the repository; _row_to_user / _row_to_session / _row_to_role
are the mappers. Session, permission and route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  UNIQUE(token) on sessions is the authoritative guard against token
  collisions. UNIQUE(project_id, user_id) on project_roles enforces the
  one-role-per-member invariant.

Timestamps:
  Stored as fixed-width ISO 8601 UTC strings (see to_iso()). Fixed width keeps
  lexicographic order equal to chronological order, so the expiry filter in
  find_active_session() can be a plain string comparison on every backend.

Errors:
  Methods let sqlalchemy.exc.SQLAlchemyError propagate. The session and
  permission layers decide whether to wrap, collapse or fail closed.

DB path: auth/projectgate.db unless DATABASE_URL says otherwise.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, MetaData, String, Table, Text, UniqueConstraint, create_engine, event, text
from sqlalchemy.engine import Engine

from auth.models import ProjectRole, Session, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(255), nullable=False),
    Column("password_hash", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("token", String(64), nullable=False, unique=True),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False, index=True),
)

_project_roles = Table(
    "project_roles",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("project_id", String(36), nullable=False),
    Column("user_id", String(36), nullable=False),
    Column("role", String(20), nullable=False),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("project_id", "user_id", name="uq_project_roles_member"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers proceed without blocking during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_iso(moment: datetime) -> str:
    """Format a datetime as fixed-width UTC ISO 8601 (microsecond precision, Z suffix)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for User, Session and ProjectRole entities.

    Usage:
        store = AuthStore(settings.database_url)
        user_id = store.create_user(User(email="a@example.com", name="A", password_hash=h))
        store.set_project_role("p1", user_id, "OWNER")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new user and return its generated ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        user_id = _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=user.email,
                    name=user.name,
                    password_hash=user.password_hash,
                    created_at=to_iso(utcnow()),
                )
            )
            conn.commit()
        return user_id

    def get_user_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Session queries
    # ------------------------------------------------------------------

    def insert_session(self, session: Session) -> str:
        """Insert a session row and return its generated ID.

        Raises sqlalchemy.exc.IntegrityError on a token collision.
        """
        session_id = _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session_id,
                    user_id=session.user_id,
                    token=session.token,
                    created_at=session.created_at,
                    expires_at=session.expires_at,
                )
            )
            conn.commit()
        return session_id

    def find_active_session(self, token: str, now_iso: str) -> Session | None:
        """Return the session matching token whose expires_at is after now_iso.

        One SELECT; a missing row and an expired row both yield None.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                _sessions.select().where((_sessions.c.token == token) & (_sessions.c.expires_at > now_iso))
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    def delete_session(self, token: str) -> bool:
        """Delete the session with this token. Returns True if a row was removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.token == token))
            conn.commit()
        return result.rowcount > 0

    def delete_expired_sessions(self, now_iso: str) -> int:
        """Delete every session with expires_at at or before now_iso. Returns rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= now_iso))
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Project role queries
    # ------------------------------------------------------------------

    def get_project_role(self, project_id: str, user_id: str) -> str | None:
        """Return the stored role text for (project_id, user_id), or None."""
        with self.engine.connect() as conn:
            return conn.execute(
                _project_roles.select()
                .with_only_columns(_project_roles.c.role)
                .where((_project_roles.c.project_id == project_id) & (_project_roles.c.user_id == user_id))
            ).scalar()

    def set_project_role(self, project_id: str, user_id: str, role: str) -> None:
        """Create or replace the role row for (project_id, user_id).

        Update-then-insert inside one transaction. A concurrent insert for the
        same pair loses on the UNIQUE constraint and raises IntegrityError.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _project_roles.update()
                .where((_project_roles.c.project_id == project_id) & (_project_roles.c.user_id == user_id))
                .values(role=role)
            )
            if result.rowcount == 0:
                conn.execute(
                    _project_roles.insert().values(
                        id=_new_id(),
                        project_id=project_id,
                        user_id=user_id,
                        role=role,
                        created_at=to_iso(utcnow()),
                    )
                )
            conn.commit()

    def remove_project_role(self, project_id: str, user_id: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _project_roles.delete().where(
                    (_project_roles.c.project_id == project_id) & (_project_roles.c.user_id == user_id)
                )
            )
            conn.commit()
        return result.rowcount > 0

    def list_project_roles(self, project_id: str) -> list[ProjectRole]:
        """Return every membership row for a project, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _project_roles.select()
                .where(_project_roles.c.project_id == project_id)
                .order_by(_project_roles.c.created_at)
            ).fetchall()
        return [_row_to_role(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        password_hash=row.password_hash,
        created_at=row.created_at,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        created_at=row.created_at,
        expires_at=row.expires_at,
    )


def _row_to_role(row) -> ProjectRole:
    return ProjectRole(
        id=row.id,
        project_id=row.project_id,
        user_id=row.user_id,
        role=row.role,
        created_at=row.created_at,
    )
